"""
Unit tests for contract log decoding.
"""

import pytest

from market_monitor.errors import DecodeError
from market_monitor.models import FieldSpec, SubscriptionSpec
from market_monitor.sources.abi import decode_args, decode_log, decode_word
from market_monitor.utils import keccak_hex

TOPIC = "0x" + "ab" * 32
SELLER = "0x" + "00" * 12 + "11" * 20


def word(value: int) -> str:
    return f"{value:064x}"


@pytest.fixture
def listed():
    return SubscriptionSpec(
        name="NFTListed",
        address="0x04653aBcccFA3Db8911E8Aba69924Cb0e94534d3",
        topic=TOPIC.upper().replace("0X", "0x"),
        fields=[
            FieldSpec(name="tokenId", type="uint256", indexed=True),
            FieldSpec(name="seller", type="address", indexed=True),
            FieldSpec(name="price", type="uint256", unit="Wei"),
        ],
    )


def listed_log(**overrides):
    log = {
        "address": "0x04653abcccfa3db8911e8aba69924cb0e94534d3",
        "topics": [TOPIC, "0x" + word(7), SELLER],
        "data": "0x" + word(10**18),
        "blockNumber": "0x10",
        "transactionHash": "0xfeed",
        "logIndex": "0x2",
    }
    log.update(overrides)
    return log


def test_keccak_event_topic():
    assert (
        keccak_hex("Transfer(address,address,uint256)")
        == "0xddf252ad1be2c89b69c2b068fc378daa952ba7f163c4a11628f55a4df523b3ef"
    )


def test_topic_override_is_lowercased(listed):
    assert listed.event_topic == TOPIC
    assert listed.signature == "NFTListed(uint256,address,uint256)"


def test_decode_word_types():
    assert decode_word("uint256", "0x" + word(255)) == 255
    assert decode_word("int256", "f" * 64) == -1
    assert decode_word("address", SELLER) == "0x" + "11" * 20
    assert decode_word("bool", word(1)) is True
    assert decode_word("bytes4", "deadbeef" + "0" * 56) == "0xdeadbeef"
    with pytest.raises(DecodeError):
        decode_word("string", word(1))
    with pytest.raises(DecodeError):
        decode_word("uint256", "zz")


def test_decode_args_indexed_and_data(listed):
    args = decode_args(listed, listed_log())
    assert args == {"tokenId": 7, "seller": "0x" + "11" * 20, "price": 10**18}
    assert list(args) == ["tokenId", "seller", "price"]


def test_decode_log_metadata(listed):
    event = decode_log(listed, listed_log())
    assert event.error is None
    assert event.block_number == 16
    assert event.log_index == 2
    assert event.transaction_hash == "0xfeed"
    assert not event.removed


@pytest.mark.parametrize(
    "overrides, fragment",
    [
        ({"topics": []}, "no topics"),
        ({"topics": ["0x" + "cd" * 32]}, "does not match"),
        ({"topics": [TOPIC, "0x" + word(7)]}, "indexed topic"),
        ({"data": "0x"}, "data word"),
    ],
)
def test_decode_log_reports_error(listed, overrides, fragment):
    event = decode_log(listed, listed_log(**overrides))
    assert event.args == {}
    assert fragment in event.error
    assert event.transaction_hash == "0xfeed"


def test_decode_log_rejects_non_mapping(listed):
    event = decode_log(listed, "0xdead")
    assert "not a log object" in event.error


def test_decode_log_drops_malformed_metadata(listed):
    event = decode_log(
        listed, listed_log(transactionHash=12345, blockNumber=True, logIndex="0xzz", removed="yes")
    )
    assert event.error is None
    assert event.args["tokenId"] == 7
    assert event.transaction_hash is None
    assert event.block_number is None
    assert event.log_index is None
    assert event.removed is False


def test_decode_log_reports_non_string_topic(listed):
    event = decode_log(listed, listed_log(topics=[123]))
    assert event.args == {}
    assert event.error
