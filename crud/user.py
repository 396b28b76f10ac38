from sqlalchemy.orm import Session
from sqlalchemy.exc import SQLAlchemyError
from typing import Optional
from models.user import User
from schemas.user import UserCreate
from utils.exceptions import StoreError

def get_user_by_id(db: Session, user_id: int) -> Optional[User]:
    return db.query(User).filter(User.id == user_id).first()

def get_user_by_email(db: Session, email: str) -> Optional[User]:
    return db.query(User).filter(User.email == email).first()

def create_user(db: Session, user: UserCreate) -> User:
    try:
        db_user = User(name=user.name, email=user.email)
        db.add(db_user)
        db.commit()
        db.refresh(db_user)
        return db_user
    except SQLAlchemyError as e:
        db.rollback()
        raise StoreError(f"사용자 생성 실패: {str(e)}") from e

def delete_user(db: Session, user_id: int) -> bool:
    """사용자 삭제 (알림과 로그는 cascade 삭제)"""
    try:
        db_user = get_user_by_id(db, user_id)
        if not db_user:
            return False
        db.delete(db_user)
        db.commit()
        return True
    except SQLAlchemyError as e:
        db.rollback()
        raise StoreError(f"사용자 삭제 실패: {str(e)}") from e
