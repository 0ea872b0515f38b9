import pytest

from _helper import make_service, make_store
from campus_eats.notifier import LocalNotifier


@pytest.fixture
def store():
    return make_store()


@pytest.fixture
def notifier():
    return LocalNotifier(queue_size=100)


@pytest.fixture
def service(store, notifier):
    return make_service(store=store, notifier=notifier)
