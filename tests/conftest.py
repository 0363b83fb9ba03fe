import io
from datetime import datetime, timedelta, timezone
from itertools import count

import pytest
from PIL import Image

from cityreport.models.report_model import Report, ReportStatus

NOW = datetime(2024, 12, 15, 12, 0, 0, tzinfo=timezone.utc)

_ids = count(1)


def make_report(created_ago=timedelta(days=1), updated_ago=None, **fields) -> Report:
    created = NOW - created_ago
    updated = NOW - updated_ago if updated_ago is not None else created
    data = {
        "id": f"r{next(_ids)}",
        "title": "Jalan berlubang",
        "description": "Lubang besar di tengah jalan",
        "category": "Jalan Rusak",
        "status": ReportStatus.NEW,
        "priority": "Sedang",
        "severity": 3,
        "latitude": -3.3194,
        "longitude": 114.5908,
        "locationName": "Banjarmasin",
        "userId": "user-1",
        "createdAt": created,
        "updatedAt": updated,
    }
    data.update(fields)
    return Report.model_validate(data)


def make_jpeg(size=(200, 100), quality=95, noise=True, exif_orientation=None) -> bytes:
    if noise:
        image = Image.effect_noise(size, 64).convert("RGB")
    else:
        image = Image.new("RGB", size, (200, 40, 40))
    buffer = io.BytesIO()
    kwargs = {"quality": quality}
    if exif_orientation is not None:
        exif = Image.Exif()
        exif[0x0112] = exif_orientation
        kwargs["exif"] = exif.tobytes()
    image.save(buffer, format="JPEG", **kwargs)
    image.close()
    return buffer.getvalue()


@pytest.fixture
def now():
    return NOW


@pytest.fixture
def report_factory():
    return make_report
