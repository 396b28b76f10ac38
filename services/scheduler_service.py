"""
알림 스윕 스케줄러
주기적으로 전송 스윕과 재시도 스윕을 실행하고, 매일 보존 기간 정리를 수행
"""

from apscheduler.schedulers.asyncio import AsyncIOScheduler
from apscheduler.triggers.cron import CronTrigger
import asyncio
import logging
import time
from typing import Callable, Optional

from config.notification_config import SWEEP_INTERVAL
from database import SessionLocal
from services.dispatchers import Dispatcher, create_dispatcher
from services.notification_service import NotificationService
from utils.clock import Clock, SystemClock

logger = logging.getLogger(__name__)

class NotificationScheduler:
    def __init__(
        self,
        session_factory: Callable = SessionLocal,
        clock: Optional[Clock] = None,
        dispatcher: Optional[Dispatcher] = None
    ):
        self.scheduler = AsyncIOScheduler()
        self.is_running = False
        self.session_factory = session_factory
        self.clock = clock or SystemClock()
        self.dispatcher = dispatcher
        # 프로세스 내 스윕은 한 번에 하나만
        self._sweep_lock = asyncio.Lock()

    def start(self):
        """스케줄러 시작"""
        if not self.is_running:
            if self.dispatcher is None:
                self.dispatcher = create_dispatcher()

            self.scheduler.add_job(
                self.run_sweeps,
                CronTrigger(minute=SWEEP_INTERVAL),
                id='notification_sweep',
                name='알림 전송/재시도 스윕',
                max_instances=1,
                coalesce=True,
                replace_existing=True
            )
            self.scheduler.add_job(
                self.run_cleanup,
                CronTrigger(hour=3, minute=0),
                id='notification_cleanup',
                name='알림 보존 기간 정리',
                max_instances=1,
                coalesce=True,
                replace_existing=True
            )

            self.scheduler.start()
            self.is_running = True
            logger.info(f"✅ 알림 스케줄러 시작됨 (스윕 간격: {SWEEP_INTERVAL}분)")

    def stop(self):
        """스케줄러 중지"""
        if self.is_running:
            self.scheduler.shutdown()
            self.is_running = False
            logger.info("⏹️ 알림 스케줄러 중지됨")

    def _service(self, db) -> NotificationService:
        return NotificationService(db, clock=self.clock, dispatcher=self.dispatcher)

    async def run_sweeps(self):
        """전송 스윕 후 재시도 스윕 실행"""
        if self._sweep_lock.locked():
            logger.warning("⚠️ 이전 스윕이 아직 실행 중이어서 건너뜀")
            return None

        async with self._sweep_lock:
            start_time = time.time()
            db = self.session_factory()
            try:
                service = self._service(db)
                due_result = await service.run_due_sweep()
                retry_result = service.run_retry_sweep()
                await self.record_metrics(due_result.total, retry_result.rescheduled, time.time() - start_time)
                return due_result, retry_result
            except Exception as e:
                logger.error(f"❌ 알림 스윕 중 오류 발생: {e}")
                return None
            finally:
                db.close()

    async def run_cleanup(self):
        """보존 기간 정리"""
        db = self.session_factory()
        try:
            return self._service(db).cleanup_expired_records()
        except Exception as e:
            logger.error(f"❌ 보존 기간 정리 중 오류 발생: {e}")
            return None
        finally:
            db.close()

    async def record_metrics(self, processed: int, rescheduled: int, processing_time: float):
        """성능 메트릭 기록"""
        logger.info(f"📊 성능 메트릭:")
        logger.info(f"   - 총 처리 시간: {processing_time:.2f}초")
        logger.info(f"   - 처리된 알림: {processed}개")
        logger.info(f"   - 재예약된 알림: {rescheduled}개")
        if processing_time > 0:
            logger.info(f"   - 처리 속도: {processed / processing_time:.2f}개/초")


# 전역 스케줄러 인스턴스
scheduler = NotificationScheduler()

def start_notification_scheduler():
    """알림 스케줄러 시작"""
    scheduler.start()

def stop_notification_scheduler():
    """알림 스케줄러 중지"""
    scheduler.stop()
