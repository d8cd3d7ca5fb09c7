from app.modules.billing.api.v1.billing import router

__all__ = ["router"]
