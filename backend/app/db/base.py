from __future__ import annotations

from app.models.entities import Base

__all__ = ["Base"]
