"""Users, roles and permission keys used to resolve the caller's context."""

from __future__ import annotations

from datetime import datetime
from typing import Optional

from sqlalchemy import Boolean, DateTime, ForeignKey, String, text
from sqlalchemy.orm import Mapped, mapped_column

from app.models.base import Base, BigIntId


class CflUsuario(Base):
    __tablename__ = "cfl_usuario"

    id_usuario: Mapped[int] = mapped_column(BigIntId, primary_key=True, autoincrement=True)
    username: Mapped[str] = mapped_column(String(50), nullable=False, unique=True)
    email: Mapped[Optional[str]] = mapped_column(String(150))
    password_hash: Mapped[Optional[str]] = mapped_column(String(255))
    nombre: Mapped[Optional[str]] = mapped_column(String(100))
    apellido: Mapped[Optional[str]] = mapped_column(String(100))
    activo: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True)
    ultimo_login: Mapped[Optional[datetime]] = mapped_column(DateTime)
    created_at: Mapped[datetime] = mapped_column(
        DateTime, nullable=False, server_default=text("CURRENT_TIMESTAMP")
    )


class CflRol(Base):
    __tablename__ = "cfl_rol"

    id_rol: Mapped[int] = mapped_column(BigIntId, primary_key=True, autoincrement=True)
    nombre: Mapped[str] = mapped_column(String(50), nullable=False, unique=True)
    descripcion: Mapped[Optional[str]] = mapped_column(String(200))
    activo: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True)


class CflPermiso(Base):
    """Free-text permission key such as ``folios.asignar``."""

    __tablename__ = "cfl_permiso"

    id_permiso: Mapped[int] = mapped_column(BigIntId, primary_key=True, autoincrement=True)
    clave: Mapped[str] = mapped_column(String(100), nullable=False, unique=True)
    descripcion: Mapped[Optional[str]] = mapped_column(String(200))
    activo: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True)


class CflUsuarioRol(Base):
    __tablename__ = "cfl_usuario_rol"

    id_usuario: Mapped[int] = mapped_column(
        BigIntId, ForeignKey("cfl_usuario.id_usuario", ondelete="CASCADE"), primary_key=True
    )
    id_rol: Mapped[int] = mapped_column(
        BigIntId, ForeignKey("cfl_rol.id_rol", ondelete="CASCADE"), primary_key=True
    )


class CflRolPermiso(Base):
    __tablename__ = "cfl_rol_permiso"

    id_rol: Mapped[int] = mapped_column(
        BigIntId, ForeignKey("cfl_rol.id_rol", ondelete="CASCADE"), primary_key=True
    )
    id_permiso: Mapped[int] = mapped_column(
        BigIntId, ForeignKey("cfl_permiso.id_permiso", ondelete="CASCADE"), primary_key=True
    )
