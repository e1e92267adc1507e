import math
from datetime import datetime, timezone
from sqlalchemy import Column, Integer, String, Boolean, DateTime, Date, Float, Text, ForeignKey, Numeric, UniqueConstraint, Index
from sqlalchemy.orm import relationship
from almacen.config.database import Base

def utcnow() -> datetime:
    """Hora UTC sin zona, formato usado en todas las columnas DateTime"""
    return datetime.now(timezone.utc).replace(tzinfo=None)

class TimestampMixin:
    """Mixin para timestamps automáticos"""
    created_at = Column(DateTime, default=utcnow, nullable=False)
    updated_at = Column(DateTime, default=utcnow, onupdate=utcnow, nullable=False)

# ===== CATÁLOGOS =====

class Categoria(Base):
    """Categoría de producto (ej. Bebidas, Abarrotes)"""
    __tablename__ = "categorias"

    id = Column(Integer, primary_key=True, index=True)
    nombre = Column(String(255), nullable=False)
    descripcion = Column(Text)
    visible = Column(Boolean, default=True)

class UnidadMedida(Base):
    """Unidad de medida (kg, unid, l)"""
    __tablename__ = "unidades_medida"

    id = Column(Integer, primary_key=True, index=True)
    nombre = Column(String(100), nullable=False)
    abreviatura = Column(String(20), nullable=False)
    visible = Column(Boolean, default=True)

class EstadoProducto(Base):
    """Estado físico del producto dentro de un lote"""
    __tablename__ = "estados_producto"

    id = Column(Integer, primary_key=True, index=True)
    nombre = Column(String(100), nullable=False)
    descripcion = Column(Text)
    visible = Column(Boolean, default=True)

class TipoContenedor(Base):
    __tablename__ = "tipos_contenedor"

    id = Column(Integer, primary_key=True, index=True)
    nombre = Column(String(100), nullable=False)
    descripcion = Column(Text)
    visible = Column(Boolean, default=True)

# ===== PRODUCTOS Y CONTENEDORES =====

class Producto(Base, TimestampMixin):
    """
    Producto del almacén.

    Si `unidades_por_caja` tiene valor el producto se maneja por cajas
    (bebidas): todos sus lotes usan ese tamaño de empaquetado.
    """
    __tablename__ = "productos"

    id = Column(Integer, primary_key=True, index=True)
    codigo = Column(String(100), index=True)
    nombre = Column(String(255), nullable=False)
    descripcion = Column(Text)
    categoria_id = Column(Integer, ForeignKey("categorias.id"))
    unidad_medida_id = Column(Integer, ForeignKey("unidades_medida.id"))
    precio_estimado = Column(Numeric(12, 2), default=0)
    stock_min = Column(Float)
    es_perecedero = Column(Boolean, default=False)
    unidades_por_caja = Column(Integer)
    visible = Column(Boolean, default=True)

    @property
    def se_maneja_por_cajas(self) -> bool:
        return bool(self.unidades_por_caja and self.unidades_por_caja > 0)

class Contenedor(Base, TimestampMixin):
    """Contenedor físico (refrigerador, estante, bodega)"""
    __tablename__ = "contenedores"

    id = Column(Integer, primary_key=True, index=True)
    codigo = Column(String(100))
    nombre = Column(String(255), nullable=False)
    tipo_contenedor_id = Column(Integer, ForeignKey("tipos_contenedor.id"))
    capacidad = Column(Float)
    ubicacion = Column(String(255))
    descripcion = Column(Text)
    visible = Column(Boolean, default=True)

# ===== LOTES =====

class Lote(Base, TimestampMixin):
    """
    Lote de un producto dentro de un contenedor (tabla detalle_contenedor).

    `empaquetado` guarda la CANTIDAD POR EMPAQUETADO, no el número de
    empaquetados. Un lote vacío se oculta (visible=False), nunca se borra.
    """
    __tablename__ = "detalle_contenedor"

    id = Column(Integer, primary_key=True, index=True)
    producto_id = Column(Integer, ForeignKey("productos.id"), nullable=False)
    contenedor_id = Column(Integer, ForeignKey("contenedores.id"), nullable=False)
    cantidad = Column(Float, nullable=False, default=0)
    empaquetado = Column(Float, nullable=False, default=0)
    precio_real_unidad = Column(Numeric(12, 2), default=0)
    fecha_vencimiento = Column(Date)
    estado_producto_id = Column(Integer, ForeignKey("estados_producto.id"))
    visible = Column(Boolean, default=True, nullable=False)

    __table_args__ = (
        Index("ix_detalle_contenedor_par", "producto_id", "contenedor_id", "visible"),
    )

    @property
    def numero_empaquetados(self) -> int:
        if not self.empaquetado or self.empaquetado <= 0:
            return 0
        return math.floor(self.cantidad / self.empaquetado + 1e-9)

# ===== MOVIMIENTOS =====

class MotivoMovimiento(Base):
    """Motivo de movimiento; el tipo define la dirección (entrada/salida)"""
    __tablename__ = "motivos_movimiento"

    id = Column(Integer, primary_key=True, index=True)
    nombre = Column(String(255), nullable=False)
    tipo_movimiento = Column(String(20), nullable=False)
    descripcion = Column(Text)
    visible = Column(Boolean, default=True)

    __table_args__ = (
        UniqueConstraint("nombre", "tipo_movimiento", name="uq_motivo_nombre_tipo"),
    )

class Movimiento(Base):
    """
    Registro del kardex. `stock_anterior`/`stock_nuevo` son la foto del
    stock total producto+contenedor (suma de lotes visibles).
    """
    __tablename__ = "movimientos"

    id = Column(Integer, primary_key=True, index=True)
    producto_id = Column(Integer, ForeignKey("productos.id"), nullable=False, index=True)
    contenedor_id = Column(Integer, ForeignKey("contenedores.id"), nullable=False, index=True)
    cantidad = Column(Float, nullable=False)
    motivo_movimiento_id = Column(Integer, ForeignKey("motivos_movimiento.id"), nullable=False)
    observacion = Column(Text)
    numero_documento = Column(String(100))
    precio_real = Column(Numeric(12, 2), default=0)
    stock_anterior = Column(Float, nullable=False, default=0)
    stock_nuevo = Column(Float, nullable=False, default=0)
    fecha_movimiento = Column(DateTime, default=utcnow, nullable=False, index=True)
    fecha_actualizacion = Column(DateTime)
    lote_id = Column(Integer, ForeignKey("detalle_contenedor.id"))
    visible = Column(Boolean, default=True, nullable=False)
    motivo_anulacion = Column(Text)
    fecha_anulacion = Column(DateTime)

    # Relationships
    motivo = relationship("MotivoMovimiento", lazy="joined")
    contenedor = relationship("Contenedor", lazy="joined")

    @property
    def tipo_movimiento(self) -> str:
        return self.motivo.tipo_movimiento
