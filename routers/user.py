from fastapi import APIRouter, Depends, HTTPException, status
from sqlalchemy.orm import Session
from database import get_db
from schemas.user import UserCreate, User
from crud.user import create_user, get_user_by_email, get_user_by_id, delete_user
from utils.exceptions import StoreError
import logging

# 로거 설정
logger = logging.getLogger(__name__)

router = APIRouter()

@router.post("/users", response_model=User, status_code=status.HTTP_201_CREATED)
def create_user_endpoint(user: UserCreate, db: Session = Depends(get_db)):
    """사용자 생성"""
    try:
        if get_user_by_email(db, user.email):
            raise HTTPException(
                status_code=status.HTTP_400_BAD_REQUEST,
                detail="이미 존재하는 이메일입니다."
            )

        db_user = create_user(db, user)
        logger.info(f"새 사용자 생성: {db_user.id} ({user.email})")
        return db_user

    except HTTPException:
        raise
    except StoreError as e:
        logger.error(f"사용자 생성 실패: {e.detail}")
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail="사용자 생성 중 오류가 발생했습니다."
        )

@router.get("/users/{user_id}", response_model=User)
def get_user_endpoint(user_id: int, db: Session = Depends(get_db)):
    """사용자 조회"""
    db_user = get_user_by_id(db, user_id)
    if not db_user:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="사용자를 찾을 수 없습니다.")
    return db_user

@router.delete("/users/{user_id}")
def delete_user_endpoint(user_id: int, db: Session = Depends(get_db)):
    """사용자 삭제 (알림과 로그도 함께 삭제)"""
    try:
        if not delete_user(db, user_id):
            raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="사용자를 찾을 수 없습니다.")
        logger.info(f"사용자 삭제: {user_id}")
        return {"message": "사용자 삭제 완료", "user_id": user_id}
    except HTTPException:
        raise
    except StoreError as e:
        logger.error(f"사용자 삭제 실패: {e.detail}")
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail="사용자 삭제 중 오류가 발생했습니다."
        )
