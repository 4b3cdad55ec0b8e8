"""
트랜잭션 실행 헬퍼

여러 테이블(원장, 재고, 주문, 체크인)을 함께 변경하는 작업을 하나의
트랜잭션으로 실행합니다. 작업 중 어떤 예외가 발생해도 롤백되므로
부분적인 원장/재고 상태는 커밋되지 않습니다.

ConflictError(낙관적 업데이트 실패)는 최신 상태로 다시 시도하고,
재시도도 실패하면 호출자에게 전달합니다.
"""

import logging
from typing import Callable, TypeVar

from sqlalchemy.orm import Session

from ahub.core.exceptions import ConflictError

logger = logging.getLogger(__name__)

R = TypeVar("R")


def run_in_transaction(
    db: Session,
    operation: Callable[[], R],
    max_attempts: int = 1,
    label: str = "transaction",
) -> R:
    """operation을 실행하고 커밋합니다. 실패 시 롤백합니다.

    Args:
        db: 데이터베이스 세션
        operation: 인자 없는 작업 함수 (재시도 시 다시 호출됨)
        max_attempts: ConflictError 발생 시 최대 시도 횟수
        label: 로그용 작업 이름

    Returns:
        operation의 반환값
    """
    attempt = 1
    while True:
        try:
            result = operation()
            db.commit()
            return result
        except ConflictError:
            db.rollback()
            if attempt >= max_attempts:
                logger.warning(f"{label}: conflict persisted after {attempt} attempts")
                raise
            logger.info(f"{label}: conflict detected, retrying ({attempt}/{max_attempts})")
            attempt += 1
        except Exception:
            db.rollback()
            raise
