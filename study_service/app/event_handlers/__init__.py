"""이벤트 핸들러 패키지."""

from .purchase_handler import run_purchase_consumer

__all__ = ["run_purchase_consumer"]
