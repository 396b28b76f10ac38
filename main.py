from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware
from contextlib import asynccontextmanager
import logging
import os
from datetime import datetime
from routers import user as user_router
from routers import notification as notification_router
from routers import analytics as analytics_router
from database import engine, Base
from config.notification_config import SCHEDULER_ENABLED
from services.dispatchers import create_dispatcher
from services.scheduler_service import start_notification_scheduler, stop_notification_scheduler
from utils.clock import SystemClock

# 로그 디렉토리 생성
def setup_logging():
    """로깅 설정 초기화"""
    # logs 디렉토리 생성
    log_dir = "logs"
    if not os.path.exists(log_dir):
        os.makedirs(log_dir)

    # 로그 파일명 (날짜별)
    today = datetime.now().strftime("%Y-%m-%d")
    log_file = f"{log_dir}/app_{today}.log"

    # 로깅 설정
    logging.basicConfig(
        level=logging.INFO,
        format='%(asctime)s - %(name)s - %(levelname)s - %(message)s',
        handlers=[
            # 파일 핸들러 (로그 파일에 저장)
            logging.FileHandler(log_file, encoding='utf-8'),
            # 콘솔 핸들러 (터미널에도 출력)
            logging.StreamHandler()
        ]
    )

    logger = logging.getLogger(__name__)
    logger.info("로깅 시스템 초기화 완료")
    logger.info(f"로그 파일 위치: {os.path.abspath(log_file)}")

    return logger

@asynccontextmanager
async def lifespan(app: FastAPI):
    logger = setup_logging()

    # 서버 시작 시 실행
    try:
        logger.info("서버 시작 중...")

        Base.metadata.create_all(bind=engine)
        logger.info("✅ 데이터베이스 테이블 생성 완료")

        if not hasattr(app.state, "clock"):
            app.state.clock = SystemClock()
        if not hasattr(app.state, "dispatcher"):
            app.state.dispatcher = create_dispatcher()

        if SCHEDULER_ENABLED:
            start_notification_scheduler()
        else:
            logger.info("ℹ️ 알림 스케줄러 비활성화 (SCHEDULER_ENABLED=false)")

    except Exception as e:
        logger.error(f"❌ 서버 초기화 중 오류 발생: {e}")
        raise

    logger.info("서버 시작 완료")
    yield

    # 서버 종료 시 실행
    logger.info("서버 종료 중...")
    if SCHEDULER_ENABLED:
        stop_notification_scheduler()

app = FastAPI(title="Notification Engine", lifespan=lifespan)

app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

app.include_router(user_router.router)
app.include_router(notification_router.router)
app.include_router(analytics_router.router)

if __name__ == "__main__":
    import uvicorn

    uvicorn.run(
        "main:app",
        host=os.getenv("HOST", "0.0.0.0"),
        port=int(os.getenv("PORT", "8000"))
    )
