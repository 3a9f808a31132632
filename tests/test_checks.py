from http import HTTPStatus

from pgflex.checks import CheckSuite, check_response


def _failing():
    raise RuntimeError("boom")


def test_all_passing_suite():
    suite = CheckSuite(name="VM")
    suite.add_check("a", lambda: "fine")
    suite.add_check("b", lambda: "also fine")
    suite.process()
    assert suite.passed() is True
    assert "a: fine" in suite.result()
    assert "b: also fine" in suite.result()


def test_failing_check_fails_suite():
    suite = CheckSuite(name="PG")
    suite.add_check("good", lambda: "ok")
    suite.add_check("bad", _failing)
    suite.process()
    assert suite.passed() is False
    assert "bad: boom" in suite.result()


def test_unprocessed_suite_not_passed():
    suite = CheckSuite(name="PG")
    suite.add_check("good", lambda: "ok")
    assert suite.passed() is False


def test_raw_result_is_bare_message():
    suite = CheckSuite(name="Role")
    suite.add_check("role", lambda: "primary")
    suite.process()
    assert suite.raw_result() == "primary"


def test_on_completion_runs():
    calls = []
    suite = CheckSuite(name="PG", on_completion=lambda: calls.append(1))
    suite.add_check("bad", _failing)
    suite.process()
    assert calls == [1]


def test_check_response_setup_error():
    suite = CheckSuite(name="PG", err_on_setup=RuntimeError("failed to initialize node"))
    status, body = check_response(suite, False)
    assert status == HTTPStatus.INTERNAL_SERVER_ERROR
    assert body == "failed to initialize node"


def test_check_response_success_raw():
    suite = CheckSuite(name="Role")
    suite.add_check("role", lambda: "replica")
    suite.process()
    assert check_response(suite, True) == (HTTPStatus.OK, "replica")


def test_check_response_failure():
    suite = CheckSuite(name="VM")
    suite.add_check("bad", _failing)
    suite.process()
    status, body = check_response(suite, False)
    assert status == HTTPStatus.INTERNAL_SERVER_ERROR
    assert body == suite.result()