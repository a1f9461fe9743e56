from app.models.entities import Base, RefreshToken, UsageRecord, User

__all__ = ["Base", "RefreshToken", "UsageRecord", "User"]
