import pytest

from compete_tracker.__main__ import build_parser


def test_refresh_defaults_to_everything():
    args = build_parser().parse_args(["refresh"])

    assert args.command == "refresh"
    assert args.target == "all"


def test_track_product_with_competitor():
    args = build_parser().parse_args(
        ["track", "product", "https://www.ebay.ca/itm/1", "--competitor", "Acme"]
    )

    assert (args.kind, args.url, args.competitor) == ("product", "https://www.ebay.ca/itm/1", "Acme")


def test_unknown_refresh_target_is_rejected():
    with pytest.raises(SystemExit):
        build_parser().parse_args(["refresh", "sellers"])
