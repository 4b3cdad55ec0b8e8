from ahub.database.connection import SessionLocal


def get_db():
    """요청 단위 세션 - 커밋은 서비스의 트랜잭션 헬퍼가 담당"""
    db = SessionLocal()
    try:
        yield db
    except Exception:
        if db.in_transaction():
            db.rollback()
        raise
    finally:
        db.close()
