"""标题候选生成测试"""

from taskcard.core.title import DEFAULT_TITLE, generate_title_candidate


class TestGenerateTitleCandidate:
    def test_empty_text(self):
        assert generate_title_candidate("") == DEFAULT_TITLE
        assert generate_title_candidate(None) == DEFAULT_TITLE

    def test_strips_mentions_and_urls(self):
        text = "<@U123ABC> review the deck https://example.com/deck"
        assert generate_title_candidate(text) == "review the deck"

    def test_first_sentence_only(self):
        assert generate_title_candidate("Send invoices\nThen archive them") == "Send invoices"
        assert generate_title_candidate("Fix the login bug! It is urgent") == "Fix the login bug"

    def test_greeting_and_request_suffix_removed(self):
        assert generate_title_candidate("すみません 資料作成お願いします") == "資料作成"

    def test_truncates_with_ellipsis(self):
        title = generate_title_candidate("abcdefghij" * 5, max_length=10)
        assert title == "abcdefghij…"

    def test_only_noise_falls_back(self):
        assert generate_title_candidate("<@U1> :tada: https://example.com") == DEFAULT_TITLE
