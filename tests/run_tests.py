# run_tests.py (اختياري)
#!/usr/bin/env python3
"""
نص تشغيل الاختبارات
"""
import sys
import pytest

if __name__ == "__main__":

    sys.exit(pytest.main([
        "tests/unit",
        "-v",  # تفصيلي
        "--tb=short",  # تتبع بسيط للأخطاء
    ]))
