from pathlib import Path
import sys

import pytest

# Ensure project root is on sys.path before tests import components
ROOT = Path(__file__).resolve().parent
if str(ROOT) not in sys.path:
    sys.path.insert(0, str(ROOT))


@pytest.fixture(autouse=True)
def _reset_storage_service():
    from components.filestorageadapter.http import set_service_for_storage

    yield
    set_service_for_storage(None)
