"""SQLAlchemy models for StockWatch."""

from app.models.stock import StockRecommendation

__all__ = ["StockRecommendation"]
