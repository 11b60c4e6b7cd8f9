# app/tasks/clear_carts.py
from app.celery_worker import celery_app
from app.data.database import SessionLocal
from app.domain.errors import CartError
from app.services.reconciler import CartStockReconciler, build_reconciler
from app.utils.logging import get_logger

logger = get_logger(__name__)


def clear_all_carts(reconciler: CartStockReconciler) -> dict:
    """
    Czysci wszystkie niepuste koszyki przez rekoncyliator,
    wiec zarezerwowany towar wraca na magazyn.
    Blad jednego koszyka nie przerywa calosci.
    """
    user_ids = reconciler.carts.user_ids_with_items()
    logger.info(f"Found {len(user_ids)} non-empty carts to clear")

    cleared, failed = 0, []
    for user_id in user_ids:
        try:
            reconciler.clear_cart(user_id)
            cleared += 1
        except CartError as e:
            logger.warning(f"Failed to clear cart of user {user_id}: {e}")
            failed.append(user_id)

    logger.info(f"Cleared {cleared} carts, {len(failed)} failed")
    return {"cleared": cleared, "failed": failed}


@celery_app.task(name="app.tasks.clear_carts.clear_all_carts_task")
def clear_all_carts_task():
    db = SessionLocal()
    try:
        return clear_all_carts(build_reconciler(db))
    finally:
        db.close()
