# decision_engine/services/safety/loader.py
import json
import yaml
from pathlib import Path
from typing import Any, Dict, List, Union


class BoundaryLoader:
    """تحميل تعريفات الحدود من ملفات YAML أو JSON"""

    @staticmethod
    def load_from_file(file_path: Union[str, Path]) -> List[Dict[str, Any]]:
        """
        قراءة ملف الحدود

        الملف إما قائمة حدود أو قاموس يحتوي المفتاح boundaries.

        Args:
            file_path: مسار الملف (JSON أو YAML)

        Returns:
            قائمة قواميس الحدود (بدون تحقق، يتم التحقق عند الإنشاء)
        """
        file_path = Path(file_path)

        if not file_path.exists():
            raise FileNotFoundError(f"Boundary file not found: {file_path}")

        # تحديد نوع الملف
        if file_path.suffix.lower() == '.json':
            with open(file_path, 'r', encoding='utf-8') as f:
                data = json.load(f)
        elif file_path.suffix.lower() in ['.yaml', '.yml']:
            with open(file_path, 'r', encoding='utf-8') as f:
                data = yaml.safe_load(f)
        else:
            raise ValueError(f"Unsupported file format: {file_path.suffix}")

        if data is None:
            return []
        if isinstance(data, dict):
            data = data.get('boundaries', [])
        if not isinstance(data, list):
            raise ValueError(f"Boundary file must contain a list of boundaries: {file_path}")

        return [dict(item) for item in data]
