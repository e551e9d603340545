import unittest
from pathlib import Path
from unittest import mock

import httpx
from supabase import PostgrestAPIError

from placement_desk.errors import ConfigError, RemoteError
from placement_desk.settings import Settings
from placement_desk.store import RestStore, api_status


def make_store(data=None):
    client = mock.MagicMock()
    table = client.table.return_value
    # Every builder step returns the same query so one execute() stub covers the chain.
    for step in ("select", "order", "in_", "insert", "upsert", "update", "delete", "eq"):
        getattr(table, step).return_value = table
    table.execute.return_value = mock.Mock(data=data)
    client.rpc.return_value.execute.return_value = mock.Mock(data=data)
    store = RestStore(client, api_key="anon-key")
    return store, client, table


class AuthHeaderTests(unittest.TestCase):
    def test_token_falls_back_to_api_key_until_signed_in(self):
        store, client, _ = make_store()
        client.postgrest.auth.assert_called_with("anon-key")
        store.set_access_token("user-jwt")
        client.postgrest.auth.assert_called_with("user-jwt")
        store.close()
        client.postgrest.auth.assert_called_with("anon-key")
        self.assertEqual(store.access_token, "")

    def test_sign_in_maps_the_auth_response(self):
        store, client, _ = make_store()
        client.auth.sign_in_with_password.return_value = mock.Mock(
            session=mock.Mock(access_token="jwt"),
            user=mock.Mock(id="u-1"),
        )
        token = store.sign_in_with_password("coord@example.edu", "secret")
        self.assertEqual(token, {"access_token": "jwt", "user": {"id": "u-1"}})
        client.auth.sign_in_with_password.assert_called_once_with(
            {"email": "coord@example.edu", "password": "secret"}
        )

        client.auth.sign_in_with_password.return_value = mock.Mock(session=None, user=None)
        self.assertEqual(store.sign_in_with_password("x@example.edu", "wrong"), {})


class QueryTests(unittest.TestCase):
    def test_select_all_orders_and_returns_rows(self):
        store, client, table = make_store([{"id": 1}])
        rows = store.select_all("student_placements", order_by="created_at", descending=True)

        self.assertEqual(rows, [{"id": 1}])
        client.table.assert_called_with("student_placements")
        table.select.assert_called_with("*")
        table.order.assert_called_with("created_at", desc=True)

    def test_select_in_dedupes_and_skips_empty_lookups(self):
        store, client, table = make_store([])
        self.assertEqual(store.select_in("master_students", "student_id", ["", None]), [])
        client.table.assert_not_called()

        store.select_in("master_students", "student_id", ["S1", "S1", "S2"])
        table.in_.assert_called_once_with("student_id", ["S1", "S2"])

    def test_upsert_passes_the_conflict_column(self):
        store, _, table = make_store([{"student_id": "S1"}])
        rows = store.upsert("master_students", [{"student_id": "S1"}], "student_id")
        self.assertEqual(rows, [{"student_id": "S1"}])
        table.upsert.assert_called_once_with([{"student_id": "S1"}], on_conflict="student_id")

    def test_update_and_delete_filter_on_id(self):
        store, _, table = make_store([])
        store.update("student_placements", "7", {"department": "CSE"})
        table.update.assert_called_once_with({"department": "CSE"})
        table.eq.assert_called_with("id", "7")

        store.delete_in("student_placements", [])
        table.delete.assert_not_called()
        store.delete_in("student_placements", ["1", "2"])
        table.in_.assert_called_with("id", ["1", "2"])

    def test_backend_error_becomes_remote_error(self):
        store, _, table = make_store()
        table.execute.side_effect = PostgrestAPIError({
            "message": "duplicate key value violates unique constraint",
            "code": "23505",
            "hint": None,
            "details": "Key (student_id)=(S1) already exists.",
        })
        with self.assertRaises(RemoteError) as ctx:
            store.insert("student_placements", [{"student_name": "Asha"}])
        self.assertIn("duplicate key value", str(ctx.exception))
        self.assertIsNone(ctx.exception.status)

    def test_only_three_digit_codes_become_statuses(self):
        self.assertEqual(api_status(PostgrestAPIError({"message": "denied", "code": "403"})), 403)
        self.assertIsNone(api_status(PostgrestAPIError({"message": "bad", "code": "PGRST116"})))

    def test_transport_failure_becomes_remote_error(self):
        store, _, table = make_store()
        table.execute.side_effect = httpx.ConnectError("connection refused")
        with self.assertRaisesRegex(RemoteError, "connection refused"):
            store.select_all("student_placements")

    def test_rpc_names_for_bulk_insert_and_batch_update(self):
        store, client, _ = make_store({"inserted": 2})
        store.bulk_insert("placement_records", [{"v_company_name": "TCS"}])
        store.batch_update("student_placements", [{"id": "1", "changes": {"department": "CSE"}}])

        first, second = client.rpc.call_args_list
        self.assertEqual(first.args, ("bulk_insert_placement_records", {"records": [{"v_company_name": "TCS"}]}))
        self.assertEqual(second.args[0], "batch_update_student_placements")
        self.assertEqual(second.args[1]["updates"][0]["changes"], {"department": "CSE"})


class FromSettingsTests(unittest.TestCase):
    def test_requires_url_and_key(self):
        with self.assertRaises(ConfigError):
            RestStore.from_settings(Settings(api_url="", api_key="k", state_dir=Path(".")))

    def test_builds_the_client_with_the_configured_timeout(self):
        settings = Settings(api_url="https://db.example.test", api_key="anon", state_dir=Path("."), timeout=12)
        with mock.patch("placement_desk.store.create_client") as create:
            store = RestStore.from_settings(settings)
        url, key = create.call_args.args
        self.assertEqual((url, key), ("https://db.example.test", "anon"))
        self.assertEqual(create.call_args.kwargs["options"].postgrest_client_timeout, 12)
        self.assertIs(store.client, create.return_value)


if __name__ == "__main__":
    unittest.main()
