"""Shared fixtures for the synchronizer tests."""

import pytest

from blockrelay.config import Config
from tests.helpers import ACCOUNT, FakeGateway, RecordingSleep


@pytest.fixture
def config() -> Config:
    return Config(
        account=ACCOUNT,
        public_key="EOS6MRyAjQq8ud7hVNYcfnVPJqcVpscN5So8BhtHuGYqET5GDW5CV",
        btc_rpc_urls=["http://127.0.0.1:8332"],
        exsat_rpc_urls=["http://127.0.0.1:8888"],
        chunk_size=100,
    )


@pytest.fixture
def gateway() -> FakeGateway:
    return FakeGateway()


@pytest.fixture
def sleep() -> RecordingSleep:
    return RecordingSleep()
