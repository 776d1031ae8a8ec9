"""Tests for the wishlist and moving items to the cart."""

import pytest
from bson import ObjectId

import cart
import wishlist
from conftest import NOW
from errors import AlreadyInWishlistError, NotFoundError, ProductUnavailableError

USER = "user-1"


def test_add_list_and_count(db, make_product):
    honey = make_product(name="Honey", stock=0)
    rice = make_product(name="Rice")
    wishlist.add_item(db, USER, honey)
    assert wishlist.add_item(db, USER, rice) == 2

    items = wishlist.get_items(db, USER, now=NOW)
    assert {item["product"]["name"] for item in items} == {"Honey", "Rice"}
    assert {item["product"]["name"]: item["in_stock"] for item in items} == {"Honey": False, "Rice": True}


def test_duplicate_add_is_rejected(db, make_product):
    pid = make_product()
    wishlist.add_item(db, USER, pid)
    with pytest.raises(AlreadyInWishlistError):
        wishlist.add_item(db, USER, pid)


def test_unknown_product(db):
    with pytest.raises(NotFoundError):
        wishlist.add_item(db, USER, str(ObjectId()))


def test_remove_and_check(db, make_product):
    pid = make_product()
    wishlist.add_item(db, USER, pid)
    assert wishlist.contains(db, USER, pid)
    wishlist.remove_item(db, USER, pid)
    assert not wishlist.contains(db, USER, pid)
    with pytest.raises(NotFoundError):
        wishlist.remove_item(db, USER, pid)


def test_deleted_product_drops_out_of_listing(db, make_product):
    pid = make_product()
    wishlist.add_item(db, USER, pid)
    db["product"].delete_one({"_id": ObjectId(pid)})
    assert wishlist.get_items(db, USER, now=NOW) == []


class TestMoveToCart:
    def test_moves_one_unit(self, db, make_product):
        pid = make_product(stock=5)
        wishlist.add_item(db, USER, pid)

        result = wishlist.move_to_cart(db, USER, pid)

        assert result["message"] == "Moved to cart"
        assert result["cart_count"] == 1
        assert not wishlist.contains(db, USER, pid)

    def test_out_of_stock_stays_in_wishlist(self, db, make_product):
        pid = make_product(name="Sold Out", stock=0)
        wishlist.add_item(db, USER, pid)

        with pytest.raises(ProductUnavailableError):
            wishlist.move_to_cart(db, USER, pid)

        assert wishlist.contains(db, USER, pid)
        assert cart.get_lines(db, USER) == []

    def test_already_in_cart_keeps_quantity(self, db, make_product):
        pid = make_product(stock=5)
        cart.add_item(db, USER, pid, 3)
        wishlist.add_item(db, USER, pid)

        result = wishlist.move_to_cart(db, USER, pid)

        assert result["cart_count"] == 3
        assert not wishlist.contains(db, USER, pid)

    def test_not_in_wishlist(self, db, make_product):
        with pytest.raises(NotFoundError):
            wishlist.move_to_cart(db, USER, make_product())
