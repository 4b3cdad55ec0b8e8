import logging
from typing import List

from sqlalchemy.orm import Session

from ahub.config import Settings, settings as default_settings
from ahub.core.capabilities import Capability, ensure_capability
from ahub.core.exceptions import NotFoundError, ValidationError
from ahub.database.transaction import run_in_transaction
from ahub.repositories.stock_repository import (
    INITIAL_STOCK_REASON,
    StockKind,
    StockRepository,
)
from ahub.repositories.store_repository import StoreItemRepository
from ahub.schemas.store import StoreItem, StoreItemCreate, StoreItemUpdate
from ahub.schemas.user import Member
from ahub.utils.date_utils import Clock, ensure_utc, utc_now

logger = logging.getLogger(__name__)


class StoreService:
    """스토어 상품 카탈로그"""

    def __init__(
        self,
        db: Session,
        settings: Settings = default_settings,
        clock: Clock = utc_now,
    ):
        self.db = db
        self.settings = settings
        self.clock = clock
        self.item_repo = StoreItemRepository(db)
        self.stock_repo = StockRepository(db)

    def list_items(self, include_inactive: bool = False) -> List[StoreItem]:
        """판매 중인 상품 목록 (판매 종료된 상품 제외)"""
        items = self.item_repo.list_items(active_only=not include_inactive)
        if include_inactive:
            return items
        now = self.clock()
        return [
            item
            for item in items
            if item.offer_ends_at is None or ensure_utc(item.offer_ends_at) > now
        ]

    def get_item(self, item_id: int) -> StoreItem:
        item = self.item_repo.get_by_id(item_id)
        if item is None:
            raise NotFoundError(f"Store item {item_id} not found", {"item_id": item_id})
        return item

    def create_item(self, actor: Member, request: StoreItemCreate) -> StoreItem:
        """상품 등록 - 초기 재고는 첫 번째 재고 이동으로 기록"""
        ensure_capability(actor, Capability.MANAGE_CATALOG)

        def operation() -> StoreItem:
            now = self.clock()
            item = self.item_repo.create(
                name=request.name,
                description=request.description,
                points_price=request.points_price,
                stock=request.initial_stock,
                is_active=request.is_active,
                offer_ends_at=ensure_utc(request.offer_ends_at),
                created_at=now,
                updated_at=now,
            )
            if request.initial_stock > 0:
                self.stock_repo.record_movement(
                    StockKind.STORE,
                    item.id,
                    request.initial_stock,
                    INITIAL_STOCK_REASON,
                    created_at=now,
                )
            return item

        item = run_in_transaction(self.db, operation, label="create_store_item")
        logger.info(f"Admin {actor.id} created store item {item.id} ({item.name})")
        return item

    def update_item(
        self, actor: Member, item_id: int, request: StoreItemUpdate
    ) -> StoreItem:
        """
        상품 수정 (가격, 판매 여부, 판매 종료 시각)

        이미 생성된 주문은 주문 시점 가격을 유지합니다. 재고는 재고 조정으로만 변경합니다.
        """
        ensure_capability(actor, Capability.MANAGE_CATALOG)
        changes = request.model_dump(exclude_unset=True)
        if not changes:
            raise ValidationError("Nothing to update")
        if "offer_ends_at" in changes:
            changes["offer_ends_at"] = ensure_utc(changes["offer_ends_at"])

        item = run_in_transaction(
            self.db,
            lambda: self.item_repo.update(item_id, updated_at=self.clock(), **changes),
            label="update_store_item",
        )
        if item is None:
            raise NotFoundError(f"Store item {item_id} not found", {"item_id": item_id})
        logger.info(f"Admin {actor.id} updated store item {item_id}: {sorted(changes)}")
        return item
