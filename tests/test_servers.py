import pytest

from liftlog.servers import normalize_nats_servers


@pytest.mark.parametrize(
    "servers, expected",
    [
        (None, None),
        (["nats://localhost:9876"], ["nats://localhost:9876"]),
        ([" nats://localhost:9876  "], ["nats://localhost:9876"]),
        (
            ["nats://localhost:9876", "nats://localhost:6789"],
            ["nats://localhost:9876", "nats://localhost:6789"],
        ),
        (
            [" nats://localhost:9876    ", "  nats://localhost:6789 "],
            ["nats://localhost:9876", "nats://localhost:6789"],
        ),
        (
            ["nats://localhost:3434,nats://localhost:2121"],
            ["nats://localhost:3434", "nats://localhost:2121"],
        ),
        (
            ["  nats://localhost:1111,    nats://localhost:2222  ,nats://localhost:3333"],
            ["nats://localhost:1111", "nats://localhost:2222", "nats://localhost:3333"],
        ),
        (
            [
                "nats://localhost:9999",
                " nats://localhost:8888  ,   nats://localhost:7777  ,nats://localhost:6666 ",
                "    nats://localhost:5555        ",
            ],
            [
                "nats://localhost:9999",
                "nats://localhost:8888",
                "nats://localhost:7777",
                "nats://localhost:6666",
                "nats://localhost:5555",
            ],
        ),
    ],
)
def test_normalize_nats_servers(servers, expected):
    assert normalize_nats_servers(servers) == expected


def test_blank_entries_dropped():
    assert normalize_nats_servers([" , ,nats://a:1,,", "   "]) == ["nats://a:1"]


def test_empty_list_gives_empty_list():
    assert normalize_nats_servers([]) == []