"""Tests for the feed service."""

from unittest.mock import patch

import pytest
from sqlalchemy.exc import OperationalError

from src.models.post import Post
from src.services.errors import Internal, NotFound, Unauthorized, ValidationFailed
from src.services.feed_service import FeedService
from src.services.realtime import POSTS_TOPIC, BroadcastHub


@pytest.fixture
def service(db, hub, image_store):
    return FeedService(db, hub, image_store, per_page=2)


def image_exists(image_store, ref: str) -> bool:
    path = image_store.path_for(ref)
    return path is not None and path.exists()


class TestCreatePost:
    """Tests for create_post."""

    def test_create_persists_and_links_to_owner(
        self, make_upload, service, db, make_user, image_store
    ):
        user = make_user("Alice")

        post = service.create_post(
            user.id, "Hello world", "First post content", make_upload("x.png")
        )

        db.refresh(user)
        assert [p.id for p in user.posts] == [post.id]
        assert post.creator_id == user.id
        assert post.image_url.startswith("images/")
        assert post.image_url.endswith("x.png")
        assert image_exists(image_store, post.image_url)

    def test_create_publishes_one_event_with_creator(self, make_upload, service, hub, make_user):
        user = make_user("Alice")

        post = service.create_post(user.id, "Hello world", "First post content", make_upload())

        assert len(hub.published) == 1
        topic, payload = hub.published[0]
        assert topic == POSTS_TOPIC
        assert payload["action"] == "create"
        assert payload["post"]["id"] == post.id
        assert payload["post"]["title"] == "Hello world"
        assert payload["post"]["creator"] == {"id": user.id, "name": "Alice"}

    def test_round_trip_through_get_post(self, make_upload, service, make_user):
        user = make_user()

        created = service.create_post(user.id, "  Hello world ", "Some content", make_upload())
        fetched = service.get_post(created.id)

        assert fetched.title == "Hello world"
        assert fetched.content == "Some content"
        assert fetched.image_url == created.image_url
        assert fetched.creator.id == user.id

    def test_missing_image_fails_validation(self, service, db, hub, make_user):
        user = make_user()

        with pytest.raises(ValidationFailed) as exc_info:
            service.create_post(user.id, "Hello world", "Some content", None)

        assert exc_info.value.errors[0]["field"] == "image"
        assert db.query(Post).count() == 0
        assert hub.published == []

    def test_short_title_fails_validation(
        self, make_upload, service, db, hub, make_user, image_store
    ):
        user = make_user()

        with pytest.raises(ValidationFailed) as exc_info:
            service.create_post(user.id, "Hi", "Some content", make_upload())

        assert [e["field"] for e in exc_info.value.errors] == ["title"]
        assert db.query(Post).count() == 0
        assert hub.published == []
        assert not image_store.root.exists() or not any(image_store.root.iterdir())

    def test_unsupported_image_type_fails_validation(self, make_upload, service, db, make_user):
        user = make_user()

        with pytest.raises(ValidationFailed):
            service.create_post(user.id, "Hello world", "Some content", make_upload("notes.txt"))
        assert db.query(Post).count() == 0

    def test_unknown_user_is_not_found(self, make_upload, service, hub):
        with pytest.raises(NotFound):
            service.create_post(99999, "Hello world", "Some content", make_upload())
        assert hub.published == []

    def test_store_failure_publishes_nothing_and_drops_image(
        self, make_upload, service, db, hub, make_user, image_store
    ):
        user = make_user()
        failure = OperationalError("INSERT", {}, Exception("disk I/O error"))

        with (
            patch.object(db, "commit", side_effect=failure),
            pytest.raises(Internal),
        ):
            service.create_post(user.id, "Hello world", "Some content", make_upload())

        assert hub.published == []
        assert not any(image_store.root.iterdir())


class TestListPosts:
    """Tests for list_posts and get_post."""

    def test_newest_first_with_fixed_page_size(self, make_upload, service, make_user):
        user = make_user()
        ids = [
            service.create_post(user.id, f"Title {i:03d}", "Some content", make_upload()).id
            for i in range(5)
        ]

        first = service.list_posts(1)
        second = service.list_posts(2)
        third = service.list_posts(3)

        assert [p.id for p in first.items] == [ids[4], ids[3]]
        assert [p.id for p in second.items] == [ids[2], ids[1]]
        assert [p.id for p in third.items] == [ids[0]]
        assert first.total_count == second.total_count == third.total_count == 5
        assert first.per_page == 2

    def test_creation_times_never_increase(self, make_upload, service, make_user):
        user = make_user()
        for i in range(4):
            service.create_post(user.id, f"Title {i:03d}", "Some content", make_upload())

        items = service.list_posts(1).items + service.list_posts(2).items
        times = [p.created_at for p in items]

        assert times == sorted(times, reverse=True)

    def test_page_past_the_end_is_empty(self, make_upload, service, make_user):
        user = make_user()
        service.create_post(user.id, "Hello world", "Some content", make_upload())

        page = service.list_posts(9)

        assert page.items == []
        assert page.total_count == 1

    def test_page_must_be_positive(self, service):
        with pytest.raises(ValidationFailed):
            service.list_posts(0)

    def test_get_missing_post(self, service):
        with pytest.raises(NotFound):
            service.get_post(12345)


class TestUpdatePost:
    """Tests for update_post."""

    def test_non_owner_is_unauthorized_and_nothing_changes(
        self, make_upload, service, db, hub, make_user, image_store
    ):
        owner = make_user("Alice")
        other = make_user("Bob")
        post = service.create_post(owner.id, "Hello world", "Some content", make_upload("x.png"))
        hub.published.clear()

        with pytest.raises(Unauthorized):
            service.update_post(
                other.id, post.id, "Hijacked title", "Other content", image=make_upload("y.png")
            )

        db.expire_all()
        stored = db.get(Post, post.id)
        assert stored.title == "Hello world"
        assert image_exists(image_store, stored.image_url)
        assert hub.published == []
        # The intruder's upload was never written
        assert len(list(image_store.root.iterdir())) == 1

    def test_owner_replacing_image_deletes_old_asset(
        self, make_upload, service, hub, make_user, image_store
    ):
        owner = make_user("Alice")
        post = service.create_post(owner.id, "Hello world", "Some content", make_upload("x.png"))
        old_image = post.image_url
        hub.published.clear()

        updated = service.update_post(
            owner.id, post.id, "New title", "New content", image=make_upload("y.png")
        )

        assert updated.image_url.endswith("y.png")
        assert image_exists(image_store, updated.image_url)
        assert not image_exists(image_store, old_image)
        assert hub.actions == ["update"]
        payload = hub.published[0][1]
        assert payload["post"]["image_url"] == updated.image_url
        assert payload["post"]["title"] == "New title"

    def test_keeping_existing_image(self, make_upload, service, make_user, image_store):
        owner = make_user()
        post = service.create_post(owner.id, "Hello world", "Some content", make_upload())
        image_url = post.image_url

        updated = service.update_post(
            owner.id, post.id, "New title", "New content", image_url=image_url
        )

        assert updated.image_url == image_url
        assert image_exists(image_store, image_url)

    def test_keeping_existing_image_with_backslashes(self, make_upload, service, make_user):
        owner = make_user()
        post = service.create_post(owner.id, "Hello world", "Some content", make_upload())
        image_url = post.image_url

        updated = service.update_post(
            owner.id, post.id, "New title", "New content", image_url=image_url.replace("/", "\\")
        )

        assert updated.image_url == image_url

    def test_cannot_take_over_another_users_image(
        self, make_upload, service, db, hub, make_user, image_store
    ):
        alice = make_user("Alice")
        bob = make_user("Bob")
        alice_post = service.create_post(
            alice.id, "Alice post", "Some content", make_upload("a.png")
        )
        bob_post = service.create_post(bob.id, "Bob post", "Some content", make_upload("b.png"))
        hub.published.clear()

        with pytest.raises(ValidationFailed) as exc_info:
            service.update_post(
                alice.id, alice_post.id, "New title", "New content", image_url=bob_post.image_url
            )

        assert exc_info.value.errors[0]["field"] == "image"
        assert hub.published == []
        db.expire_all()
        assert db.get(Post, alice_post.id).image_url == alice_post.image_url
        assert image_exists(image_store, alice_post.image_url)

        service.delete_post(alice.id, alice_post.id)

        assert image_exists(image_store, bob_post.image_url)
        assert db.get(Post, bob_post.id).image_url == bob_post.image_url

    def test_no_image_reference_fails_validation(self, make_upload, service, hub, make_user):
        owner = make_user()
        post = service.create_post(owner.id, "Hello world", "Some content", make_upload())
        hub.published.clear()

        with pytest.raises(ValidationFailed):
            service.update_post(owner.id, post.id, "New title", "New content")
        assert hub.published == []

    def test_missing_old_asset_does_not_block_update(
        self, make_upload, service, hub, make_user, image_store
    ):
        owner = make_user()
        post = service.create_post(owner.id, "Hello world", "Some content", make_upload("x.png"))
        image_store.path_for(post.image_url).unlink()
        hub.published.clear()

        updated = service.update_post(
            owner.id, post.id, "New title", "New content", image=make_upload("y.png")
        )

        assert updated.image_url.endswith("y.png")
        assert hub.actions == ["update"]

    def test_missing_post_is_not_found(self, service, make_user):
        owner = make_user()

        with pytest.raises(NotFound):
            service.update_post(
                owner.id, 4242, "New title", "New content", image_url="images/a.png"
            )


class TestDeletePost:
    """Tests for delete_post."""

    def test_owner_delete_removes_post_reference_and_asset(
        self, make_upload, service, db, hub, make_user, image_store
    ):
        owner = make_user()
        post = service.create_post(owner.id, "Hello world", "Some content", make_upload())
        post_id, image_url = post.id, post.image_url
        hub.published.clear()

        service.delete_post(owner.id, post_id)

        db.expire_all()
        assert db.get(Post, post_id) is None
        assert db.get(type(owner), owner.id).posts == []
        assert not image_exists(image_store, image_url)
        assert hub.published == [(POSTS_TOPIC, {"action": "delete", "post_id": post_id})]

    def test_non_owner_is_unauthorized(self, make_upload, service, db, hub, make_user):
        owner = make_user()
        other = make_user()
        post = service.create_post(owner.id, "Hello world", "Some content", make_upload())
        hub.published.clear()

        with pytest.raises(Unauthorized):
            service.delete_post(other.id, post.id)

        assert db.get(Post, post.id) is not None
        assert hub.published == []

    def test_missing_post_is_not_found(self, service, hub, make_user):
        owner = make_user()

        with pytest.raises(NotFound):
            service.delete_post(owner.id, 4242)
        assert hub.published == []


class TestBroadcastFailures:
    """A broken hub never fails the triggering operation."""

    def test_publish_error_is_swallowed(self, make_upload, db, make_user, image_store):
        class BrokenHub(BroadcastHub):
            def _deliver(self, topic, payload):
                raise RuntimeError("fanout down")

        service = FeedService(db, BrokenHub(), image_store)
        owner = make_user()

        post = service.create_post(owner.id, "Hello world", "Some content", make_upload())

        assert db.get(Post, post.id) is not None
