import logging
import sys
from logging.handlers import RotatingFileHandler
from datetime import datetime
from pathlib import Path
import json


class JSONFormatter(logging.Formatter):
    """تنسيق JSON لسجلات التدقيق"""

    def format(self, record):
        if isinstance(record.msg, dict):
            log_data = dict(record.msg)
            log_data['level'] = record.levelname
            log_data['logged_at'] = datetime.utcnow().isoformat()
            return json.dumps(log_data, default=str, ensure_ascii=False)
        return super().format(record)


def setup_logging(log_dir: str = "logs", level: str = "INFO"):
    """إعداد نظام التسجيل (Logging) للتطبيق"""

    log_path = Path(log_dir)
    log_path.mkdir(parents=True, exist_ok=True)
    log_level = getattr(logging, level.upper(), logging.INFO)

    # إنشاء logger رئيسي
    logger = logging.getLogger()
    logger.setLevel(log_level)

    # إزالة أي معالجات موجودة
    logger.handlers.clear()

    # تنسيق السجلات
    formatter = logging.Formatter(
        '%(asctime)s - %(name)s - %(levelname)s - %(message)s',
        datefmt='%Y-%m-%d %H:%M:%S'
    )

    # معالج للتحكم (stdout)
    console_handler = logging.StreamHandler(sys.stdout)
    console_handler.setLevel(log_level)
    console_handler.setFormatter(formatter)
    logger.addHandler(console_handler)

    # معالج لملف السجلات العامة
    file_handler = RotatingFileHandler(
        log_path / 'decision_engine.log',
        maxBytes=10*1024*1024,  # 10MB
        backupCount=5
    )
    file_handler.setLevel(log_level)
    file_handler.setFormatter(formatter)
    logger.addHandler(file_handler)

    # معالج منفصل لسجلات الأخطاء
    error_handler = RotatingFileHandler(
        log_path / 'decision_engine_errors.log',
        maxBytes=5*1024*1024,  # 5MB
        backupCount=3
    )
    error_handler.setLevel(logging.ERROR)
    error_handler.setFormatter(formatter)
    logger.addHandler(error_handler)

    # سجل التدقيق لانتهاكات الحدود (JSON)
    audit_handler = RotatingFileHandler(
        log_path / 'boundary_audit.log',
        maxBytes=10*1024*1024,
        backupCount=5
    )
    audit_handler.setLevel(logging.INFO)
    audit_handler.setFormatter(JSONFormatter())

    audit_logger = logging.getLogger('audit')
    audit_logger.setLevel(logging.INFO)
    audit_logger.handlers.clear()
    audit_logger.addHandler(audit_handler)
    audit_logger.propagate = False

    # تعطيل logging لبعض المكتبات الصاخبة
    logging.getLogger('uvicorn.access').setLevel(logging.WARNING)
    logging.getLogger('sqlalchemy.engine').setLevel(logging.WARNING)
    logging.getLogger('aiohttp.access').setLevel(logging.WARNING)

    logger.info("تم إعداد نظام التسجيل بنجاح")
