"""
Tests for sidebar reactions
"""

import pytest

from infrastructure.storage.storage_service import MemoryStorageService
from services.ui_service.preferences import UIPreferenceStore
from services.ui_service.reactions import bind_sidebar_reactions


class TestSidebarReactions:
    """Test the sidebar closes on mobile"""

    @pytest.fixture(autouse=True)
    def bind(self, store, pipeline):
        self.store = store
        self.pipeline = pipeline
        self.preferences = UIPreferenceStore(MemoryStorageService(namespace="ui"))
        self.preferences.load()
        self.unbind = bind_sidebar_reactions(store, self.preferences)

    def go_mobile(self):
        self.preferences.on_resize(375)
        self.preferences.set_sidebar_open(True)

    def test_closes_when_viewport_becomes_mobile(self):
        """Test shrinking to mobile width closes an open sidebar"""
        assert self.preferences.preferences.sidebar_open

        self.preferences.on_resize(375)

        assert self.preferences.preferences.is_mobile
        assert not self.preferences.preferences.sidebar_open

    def test_stays_open_on_desktop_resize(self):
        """Test desktop resizes leave the sidebar alone"""
        self.preferences.on_resize(1400)
        self.preferences.on_resize(900)

        assert self.preferences.preferences.sidebar_open

    def test_closes_after_selection_on_mobile(self):
        """Test picking a conversation on mobile closes the sidebar"""
        first = self.store.create_conversation()
        self.store.create_conversation()
        self.go_mobile()

        self.store.select_conversation(first)

        assert not self.preferences.preferences.sidebar_open

    def test_closes_after_new_conversation_on_mobile(self):
        """Test starting a conversation on mobile closes the sidebar"""
        self.go_mobile()

        self.store.create_conversation()

        assert not self.preferences.preferences.sidebar_open

    @pytest.mark.asyncio
    async def test_closes_when_sending_on_mobile(self):
        """Test sending into the open conversation on mobile closes the sidebar"""
        conversation_id = self.store.create_conversation()
        self.go_mobile()
        seen = []
        self.store.subscribe(
            lambda action, state: seen.append((type(action).__name__, self.preferences.preferences.sidebar_open))
        )

        task = self.pipeline.begin_send(conversation_id, "hello")

        assert seen == [("MessageAppended", True), ("SendStarted", False)]
        await task

    def test_closes_after_navigation_on_mobile(self):
        """Test changing page on mobile closes the sidebar"""
        self.go_mobile()

        self.preferences.set_current_page("settings")

        assert self.preferences.preferences.current_page == "settings"
        assert not self.preferences.preferences.sidebar_open

    def test_selection_on_desktop_keeps_sidebar(self):
        """Test selection on desktop keeps the sidebar open"""
        first = self.store.create_conversation()
        self.store.create_conversation()

        self.store.select_conversation(first)

        assert self.preferences.preferences.sidebar_open

    def test_unbind(self):
        """Test unbinding stops the reactions"""
        self.unbind()
        self.go_mobile()

        self.store.create_conversation()

        assert self.preferences.preferences.sidebar_open
