"""
알림 엔진 설정
환경변수 기반 설정값과 알림 타입별 기본 채널 정의
"""

import os
from typing import Dict, Tuple

# 데이터베이스
DATABASE_URL = os.getenv('DATABASE_URL', 'sqlite:///./notifications.db')

# 스케줄러 (주기적 스윕)
SCHEDULER_ENABLED = os.getenv('SCHEDULER_ENABLED', 'false').lower() in ('1', 'true', 'yes')
SWEEP_INTERVAL = os.getenv('SWEEP_INTERVAL', '*/5')
SWEEP_BATCH_SIZE = int(os.getenv('SWEEP_BATCH_SIZE', '100'))
DISPATCH_CLAIM_TIMEOUT_SECONDS = int(os.getenv('DISPATCH_CLAIM_TIMEOUT_SECONDS', '300'))

# 재시도 정책
DEFAULT_MAX_RETRIES = int(os.getenv('DEFAULT_MAX_RETRIES', '3'))
RETRY_BACKOFF_STRATEGY = os.getenv('RETRY_BACKOFF_STRATEGY', 'exponential')
RETRY_BASE_DELAY_SECONDS = float(os.getenv('RETRY_BASE_DELAY_SECONDS', '60'))
RETRY_BACKOFF_FACTOR = float(os.getenv('RETRY_BACKOFF_FACTOR', '2.0'))
RETRY_MAX_DELAY_SECONDS = float(os.getenv('RETRY_MAX_DELAY_SECONDS', '3600'))

# 분석 (성공률, 재시도율, 에러 다양성 가중치)
HEALTH_SCORE_WEIGHTS = os.getenv('HEALTH_SCORE_WEIGHTS', '60,25,15')

# 보존 기간
LOG_RETENTION_DAYS = int(os.getenv('LOG_RETENTION_DAYS', '90'))
NOTIFICATION_RETENTION_DAYS = int(os.getenv('NOTIFICATION_RETENTION_DAYS', '180'))

# 디스패처
DISPATCHER = os.getenv('DISPATCHER', 'in_app')
WEBHOOK_URL = os.getenv('WEBHOOK_URL', '')
WEBHOOK_TIMEOUT_SECONDS = float(os.getenv('WEBHOOK_TIMEOUT_SECONDS', '10'))

# 필드 제한
MAX_TITLE_LENGTH = 100
MAX_MESSAGE_LENGTH = 500

# 알림 타입별 기본 채널
NOTIFICATION_CHANNELS = {
    'workout_reminder': 'workout_reminders',
    'goal_achievement': 'achievements',
    'goal_deadline_approaching': 'goal_reminders',
    'daily_motivation': 'motivation',
    'step_milestone': 'achievements',
    'weekly_progress': 'progress_reports',
    'nutrition_reminder': 'health_reminders',
    'hydration_reminder': 'health_reminders',
    'rest_day_reminder': 'workout_reminders',
    'achievement_unlocked': 'achievements',
    'workout_streak': 'achievements',
    'inactive_user_engagement': 'engagement',
}

DEFAULT_CHANNEL = 'general'


def get_default_channel(notification_type: str) -> str:
    """알림 타입의 기본 채널 반환"""
    return NOTIFICATION_CHANNELS.get(notification_type, DEFAULT_CHANNEL)


def get_retry_settings() -> Dict:
    """재시도 정책 설정 반환"""
    return {
        'strategy': RETRY_BACKOFF_STRATEGY,
        'base_delay_seconds': RETRY_BASE_DELAY_SECONDS,
        'factor': RETRY_BACKOFF_FACTOR,
        'max_delay_seconds': RETRY_MAX_DELAY_SECONDS,
    }


def get_health_score_weights() -> Tuple[float, float, float]:
    """헬스 스코어 가중치 (성공률, 재시도율, 에러 다양성)"""
    parts = [p.strip() for p in HEALTH_SCORE_WEIGHTS.split(',')]
    if len(parts) != 3:
        raise ValueError(f"HEALTH_SCORE_WEIGHTS 형식이 잘못되었습니다: {HEALTH_SCORE_WEIGHTS}")
    return tuple(float(p) for p in parts)


def get_retention_settings() -> Dict[str, int]:
    """데이터 보존 기간 설정 반환"""
    return {
        'log_retention_days': LOG_RETENTION_DAYS,
        'notification_retention_days': NOTIFICATION_RETENTION_DAYS,
    }
