from decimal import Decimal
from io import BytesIO

import pytest
from psycopg import errors as pg_errors

from marketplace import accounts, cart, catalog, orders
from marketplace.errors import InvalidInput, RecordNotFound
from tests.fakes import FakeConn, FakeCursor


class TestAccounts:
    def test_password_hash_round_trip(self):
        hashed = accounts.hash_password("s3cret", rounds=4)
        assert hashed.startswith("$2")
        assert accounts.verify_password("s3cret", hashed)
        assert not accounts.verify_password("other", hashed)

    def test_verify_rejects_non_bcrypt_hash(self):
        assert accounts.verify_password("pw", "plaintext") is False

    def test_signup_rejects_unknown_role(self):
        with pytest.raises(InvalidInput):
            accounts.signup(FakeConn(), "A", "a@b.c", "pw", "admin")

    def test_signup_race_on_unique_email(self):
        conn = FakeConn(FakeCursor([]), pg_errors.UniqueViolation("email"))
        with pytest.raises(accounts.EmailAlreadyExists):
            accounts.signup(conn, "A", "a@b.c", "pw", "consumer")

    def test_login_role_is_optional(self):
        hashed = accounts.hash_password("pw", rounds=4)
        conn = FakeConn(FakeCursor([{"id": 4, "password": hashed, "role": "farmer"}]))
        assert accounts.login(conn, "F@b.c", "pw") == {"userId": 4, "userType": "farmer"}
        assert conn.executed[0][1] == ("f@b.c",)


class TestCatalog:
    def test_add_crop_validates_numbers(self):
        with pytest.raises(InvalidInput):
            catalog.add_crop(FakeConn(), "Rice", "2.5", "Pune", "10", "uploads/x.png", "1")
        with pytest.raises(InvalidInput):
            catalog.add_crop(FakeConn(), "Rice", "5", "Pune", "NaN", "uploads/x.png", "1")
        with pytest.raises(InvalidInput, match="whole number"):
            catalog.add_crop(FakeConn(), "Rice", "-1", "Pune", "10", "uploads/x.png", "1")
        with pytest.raises(InvalidInput, match="required"):
            catalog.add_crop(FakeConn(), "Rice", "", "Pune", "10", "uploads/x.png", "1")

    def test_add_crop_accepts_zero_quantity_and_price(self):
        conn = FakeConn(FakeCursor([{"id": 3}]))

        assert catalog.add_crop(conn, "Rice", "0", "Pune", "0", "uploads/x.png", "1") == 3
        assert conn.executed[0][1] == ("Rice", 0, "Pune", Decimal("0"), "uploads/x.png", 1)

    def test_list_crops_defaults_to_newest_first(self):
        conn = FakeConn(FakeCursor([]))
        assert catalog.list_crops(conn) == []
        sql, params = conn.executed[0]
        assert "WHERE" not in sql
        assert sql.endswith("ORDER BY c.id DESC")
        assert params == []

    def test_list_crops_unknown_sort_falls_back(self):
        conn = FakeConn(FakeCursor([]))
        catalog.list_crops(conn, sort="'; DROP TABLE crops; --", farmer_id="3")
        sql, params = conn.executed[0]
        assert "DROP" not in sql
        assert "c.farmer_id = %s" in sql
        assert params == [3]

    def test_list_crops_rating_sort(self):
        conn = FakeConn(FakeCursor([]))
        catalog.list_crops(conn, sort="rating_desc")
        assert conn.statements[0].endswith(
            "ORDER BY COALESCE(r.avg_rating, 0) DESC, COALESCE(r.rating_count, 0) DESC"
        )

    def test_update_crop_builds_only_given_fields(self):
        conn = FakeConn(FakeCursor(rowcount=1))
        catalog.update_crop(conn, 5, 2, price=Decimal("9.00"), location=" Agra ")
        sql, params = conn.executed[0]
        assert sql == "UPDATE crops SET price = %s, location = %s WHERE id = %s AND farmer_id = %s"
        assert params == [Decimal("9.00"), "Agra", 5, 2]

    def test_delete_crop_not_owned(self):
        with pytest.raises(RecordNotFound):
            catalog.delete_crop(FakeConn(FakeCursor(rowcount=0)), 5, 99)

    def test_rate_crop_returns_aggregate(self):
        conn = FakeConn(FakeCursor(), FakeCursor([{"avg_rating": None, "rating_count": 0}]))
        assert catalog.rate_crop(conn, 1, 2, 3) == {"avg_rating": 0.0, "rating_count": 0}
        assert "ON CONFLICT (user_id, crop_id)" in conn.statements[0]

    def test_save_image(self, tmp_path):
        url = catalog.save_image("photo.PNG", BytesIO(b"data"), upload_dir=str(tmp_path))
        name = url.split("/", 1)[1]
        assert url.startswith("uploads/") and name.endswith(".png")
        assert (tmp_path / name).read_bytes() == b"data"


class TestCart:
    def test_add_rejects_non_positive_quantity(self):
        with pytest.raises(InvalidInput):
            cart.add_to_cart(FakeConn(), 1, 2, 0)

    def test_add_unknown_crop(self):
        conn = FakeConn(pg_errors.ForeignKeyViolation("crop_id"))
        with pytest.raises(RecordNotFound):
            cart.add_to_cart(conn, 1, 999, 1)
        assert len(conn.executed) == 1

    def test_add_is_a_single_upsert(self):
        conn = FakeConn(FakeCursor([{"inserted": False}]))

        assert cart.add_to_cart(conn, 1, 2, 4) == "updated"
        sql, params = conn.executed[0]
        assert sql.startswith("INSERT INTO cart(user_id, crop_id, quantity)")
        assert "SET quantity = cart.quantity + EXCLUDED.quantity" in sql
        assert params == (1, 2, 4)
        assert len(conn.executed) == 1

    def test_remove_is_scoped_to_user(self):
        conn = FakeConn(FakeCursor(rowcount=1))
        cart.remove_from_cart(conn, 1, 8)
        assert conn.executed[0][1] == (8, 1)


class TestOrders:
    def test_no_orders_skips_item_query(self):
        conn = FakeConn(FakeCursor([]))
        assert orders.orders_for_buyer(conn, 7) == []
        assert len(conn.executed) == 1

    def test_orders_are_grouped_with_frozen_prices(self):
        conn = FakeConn(
            FakeCursor([
                {"id": 9, "total": Decimal("3.00"), "created_at": None},
                {"id": 4, "total": Decimal("10.00"), "created_at": None},
            ]),
            FakeCursor([
                {"order_id": 4, "crop_id": 1, "crop_name": "Rice", "quantity": 4, "price": Decimal("2.50")},
                {"order_id": 9, "crop_id": 2, "crop_name": "Dal", "quantity": 1, "price": Decimal("3.00")},
            ]),
        )

        result = orders.orders_for_buyer(conn, 7)

        assert [o["id"] for o in result] == [9, 4]
        assert conn.executed[1][1] == ([9, 4],)
        for order in result:
            assert order["total"] == sum(i["price"] * i["quantity"] for i in order["items"])

    def test_lines_of_deleted_crops_are_kept(self):
        conn = FakeConn(
            FakeCursor([{"id": 4, "total": Decimal("10.00"), "created_at": None}]),
            FakeCursor([
                {"order_id": 4, "crop_id": None, "crop_name": "Rice", "quantity": 4, "price": Decimal("2.50")},
            ]),
        )

        [order] = orders.orders_for_buyer(conn, 7)

        assert order["items"] == [{"crop_id": None, "crop_name": "Rice", "quantity": 4, "price": Decimal("2.50")}]
        assert "JOIN crops" not in conn.statements[1]

    def test_sales_for_farmer(self):
        conn = FakeConn(FakeCursor([{"order_id": 1}]))
        assert orders.sales_for_farmer(conn, 2) == [{"order_id": 1}]
        assert conn.executed[0][1] == (2,)
        assert "WHERE c.farmer_id = %s" in conn.statements[0]
