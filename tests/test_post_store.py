"""
Post store tests: creation, merging, persistence and deletion.
"""
import pytest

from config import LECTURER_POSTS_KEY, NEW_SIGNALS_KEY, STUDENT_POSTS_KEY, VIDEO_POSTS_KEY
from models.audience import GLOBAL, audience_for_student
from models.post import to_millis
from models.viewer import LECTURER
from processing.audience_filter import AudienceFilter
from processing.signals import SignalBoard
from storage.attachments import AttachmentStore, Upload
from storage.database import LocalStore
from storage.post_store import PostDraft, PostStore, lean_record


@pytest.fixture()
def store(local, attachments, clock):
    return PostStore(local, attachments=attachments, signals=SignalBoard(local, clock=clock), clock=clock)


def draft_for(viewer, **kw):
    kw.setdefault("html", "<p>hello</p>")
    return PostDraft(audience=audience_for_student(viewer), **kw)


class TestCreatePost:
    """Creating student and lecturer posts."""

    def test_student_post_goes_to_student_collection(self, store, local, alice, clock):
        post = store.create_post(alice, draft_for(alice))

        assert post.id == f"p{clock.now}"
        assert post.author_type == "student"
        assert post.author_id == "u_alice"
        assert post.audience.key == "UniA__Science__Chemistry__2"
        assert post.author_program == "Chemistry"
        assert [r["id"] for r in local.get_json(STUDENT_POSTS_KEY)] == [post.id]
        assert local.get_json(LECTURER_POSTS_KEY) is None

    def test_newest_post_is_prepended(self, store, alice, clock):
        first = store.create_post(alice, draft_for(alice, html="one"))
        clock.advance()
        second = store.create_post(alice, draft_for(alice, html="two"))
        assert [p.id for p in store.student_posts] == [second.id, first.id]

    def test_ids_unique_under_a_frozen_clock(self, store, alice):
        a = store.create_post(alice, draft_for(alice, html="a"))
        b = store.create_post(alice, draft_for(alice, html="b"))
        assert a.id != b.id
        assert b.created_at > a.created_at

    def test_faculty_post_label(self, store, alice):
        draft = PostDraft(audience=audience_for_student(alice, to_faculty=True), html="hi")
        post = store.create_post(alice, draft)
        assert post.audience.key == "FACULTY__UniA__Science__2"
        assert post.author_program == "Science • 2"

    def test_rejects_invalid_drafts(self, store, alice):
        with pytest.raises(ValueError):
            store.create_post(alice, PostDraft(html="no audience"))
        with pytest.raises(ValueError):
            store.create_post(alice, draft_for(alice, html="  "))
        with pytest.raises(ValueError):
            store.create_post(alice, draft_for(alice, type="Video", video_id="abc"))
        with pytest.raises(ValueError):
            store.create_post(alice, draft_for(alice, type="Academic Books", book_title="SICP"))
        with pytest.raises(ValueError):
            store.create_post(alice, draft_for(alice, type="Memes"))
        with pytest.raises(ValueError):
            store.create_post(alice, draft_for(alice, images=["data:,x"] * 7))

    def test_book_title_and_cover(self, store, alice, jpeg_bytes):
        draft = draft_for(alice, type="Academic Books", book_title="Organic Chemistry",
                          images=[Upload("cover.jpg", jpeg_bytes, "image/jpeg")])
        post = store.create_post(alice, draft)
        assert post.title == "Organic Chemistry"
        assert post.images[0].name == "cover.jpg"
        assert post.images[0].thumb.startswith("data:image/jpeg;base64,")

    def test_uploads_need_an_attachment_store(self, local, alice, jpeg_bytes):
        store = PostStore(local)
        with pytest.raises(ValueError):
            store.create_post(alice, draft_for(alice, images=[Upload("a.jpg", jpeg_bytes)]))

    def test_lecturer_post_bumps_signal(self, store, local, lecturer):
        draft = PostDraft(audience=GLOBAL, html="Welcome")
        post = store.create_post(lecturer, draft, author_type=LECTURER)

        assert post.id.startswith("lp")
        assert post.author == "Dr. Okafor"
        assert local.get_json(NEW_SIGNALS_KEY)["GLOBAL"]["lecturer"] == 1
        assert [r["id"] for r in local.get_json(LECTURER_POSTS_KEY)] == [post.id]


class TestProgramFanOut:
    """Lecturer posts to several programs at once."""

    def test_one_post_per_program_sharing_a_group(self, store, local, lecturer, clock):
        posts = store.create_program_posts(
            lecturer, PostDraft(html="Quiz on Friday", type="Assignments"),
            programs=["Physics", "Chemistry"], year="2",
        )

        assert [p.id for p in posts] == [f"lp{clock.now}_0", f"lp{clock.now}_1"]
        assert {p.audience.key for p in posts} == {
            "UniA__Science__Physics__2", "UniA__Science__Chemistry__2",
        }
        assert len({p.multi_group_id for p in posts}) == 1
        assert all(p.multi_programs == ["Physics", "Chemistry"] for p in posts)

        signals = local.get_json(NEW_SIGNALS_KEY)
        assert signals["UniA__Science__Physics__2"]["lecturer"] == 1
        assert signals["UniA__Science__Chemistry__2"]["lecturer"] == 1

        rows = AudienceFilter().lecturer_view(store.merge_for_feed(), lecturer)
        assert len(rows) == 1
        assert rows[0].multi_programs == ["Chemistry", "Physics"]

    def test_each_student_sees_only_their_program_copy(self, store, lecturer, alice, carol):
        store.create_program_posts(lecturer, PostDraft(html="Lab"), programs=["Chemistry"], year="2")
        rules = AudienceFilter()
        posts = store.merge_for_feed()
        assert len(rules.build_feed(posts, alice)) == 1
        assert rules.build_feed(posts, carol) == []

    def test_faculty_publish(self, store, lecturer, alice, carol):
        posts = store.create_program_posts(lecturer, PostDraft(html="Exam timetable"), year="2", to_faculty=True)

        assert len(posts) == 1
        assert posts[0].audience.key == "FACULTY__UniA__Science__2"
        assert store.get(posts[0].id).target_year == "2"
        rules = AudienceFilter()
        assert rules.is_visible(posts[0], alice)
        assert not rules.is_visible(posts[0], carol)

    def test_callers_draft_is_left_alone(self, store, lecturer):
        draft = PostDraft(html="Reading list")
        store.create_program_posts(lecturer, draft, programs=["Physics", "Chemistry"], year="2")
        store.create_program_posts(lecturer, draft, year="2", to_faculty=True)
        assert draft.audience is None

    def test_requires_year_and_programs(self, store, lecturer):
        with pytest.raises(ValueError):
            store.create_program_posts(lecturer, PostDraft(html="x"), programs=["Physics"])
        with pytest.raises(ValueError):
            store.create_program_posts(lecturer, PostDraft(html="x"), year="2")


class TestMergeAndLoad:
    """Reading both collections back."""

    def test_merge_is_stable(self, store, alice, lecturer):
        store.create_post(alice, draft_for(alice))
        store.create_post(lecturer, PostDraft(audience=GLOBAL, html="x"), author_type=LECTURER)

        first = store.merge_for_feed()
        second = store.merge_for_feed()
        assert [p.id for p in first] == [p.id for p in second]
        assert len(first) == 2
        assert first[0].author_type == "student"
        assert first[1].author_type == "lecturer"

    def test_legacy_lecturer_records(self, local):
        local.set_json(LECTURER_POSTS_KEY, [{
            "id": "lp1",
            "createdAt": "2024-01-01T00:00:00.000Z",
            "author": "Dr. Old",
            "audience": "GLOBAL",
            "html": "legacy",
        }])
        post = PostStore(local).merge_for_feed()[0]
        assert post.author_type == "lecturer"
        assert post.created_at == 1704067200000

    def test_malformed_json_reads_as_empty(self, local):
        local.set_raw(STUDENT_POSTS_KEY, "{not json")
        local.set_raw(LECTURER_POSTS_KEY, '{"not": "a list"}')
        assert PostStore(local).merge_for_feed() == []

    def test_out_of_range_fields_degrade(self, local):
        local.set_raw(STUDENT_POSTS_KEY, (
            '[{"id": "p1", "createdAt": "Infinity", "likes": "x", "audience": "GLOBAL", "html": "a"},'
            ' {"id": "p2", "createdAt": 1e400, "likes": "3.5", "audience": "GLOBAL", "html": "b"},'
            ' {"id": "p3", "createdAt": "1e400", "likes": Infinity, "multiPrograms": 7,'
            '  "audience": "GLOBAL", "html": "c"}]'
        ))
        posts = {p.id: p for p in PostStore(local).merge_for_feed()}

        assert sorted(posts) == ["p1", "p2", "p3"]
        assert [posts[k].created_at for k in ("p1", "p2", "p3")] == [0, 0, 0]
        assert [posts[k].likes for k in ("p1", "p2", "p3")] == [0, 3, 0]
        assert posts["p3"].multi_programs == []

    @pytest.mark.parametrize("raw", ["Infinity", "-Infinity", "NaN", "1e400", "soon"])
    def test_to_millis_never_raises(self, raw):
        assert to_millis(raw) == 0

    def test_round_trip_through_storage(self, store, local, alice):
        post = store.create_post(alice, draft_for(alice, title="Notes wk1"))
        store.add_comment(post.id, alice, "first!")

        reloaded = PostStore(local).get(post.id)
        assert reloaded.title == "Notes wk1"
        assert reloaded.comments[0].text == "first!"
        assert reloaded.audience == post.audience

    def test_video_posts(self, local):
        local.set_json(VIDEO_POSTS_KEY, [{
            "id": "v1",
            "createdAt": 5,
            "type": "Video",
            "audience": "Both",
            "videoUrlOrId": "dQw4w9WgXcQ",
            "videoAudience": {"scope": "continent", "continents": ["Asia"]},
        }])
        video = PostStore(local).video_posts()[0]
        assert video.type == "video"
        assert video.audience == "both"
        assert video.continents == ["Asia"]


class TestLeanFallback:
    """Quota pressure drops thumbnails but keeps descriptors."""

    def test_lean_record_strips_every_level(self):
        att = {"id": "a1", "name": "x.jpg", "mime": "image/jpeg", "thumb": "data:..."}
        record = {
            "id": "p1",
            "images": [att],
            "files": [],
            "comments": [{"id": "c1", "images": [att], "files": [att],
                          "replies": [{"id": "r1", "images": [att], "files": []}]}],
        }
        lean = lean_record(record)
        bare = {"id": "a1", "name": "x.jpg", "mime": "image/jpeg"}
        assert lean["images"] == [bare]
        assert lean["comments"][0]["files"] == [bare]
        assert lean["comments"][0]["replies"][0]["images"] == [bare]
        assert record["images"][0]["thumb"] == "data:..."

    def test_retry_without_thumbnails(self, db_path):
        roomy = LocalStore(db_path, quota_bytes=10_000_000)
        roomy.set_json(STUDENT_POSTS_KEY, [{
            "id": "p1",
            "createdAt": 1,
            "author": "Alice",
            "audience": "GLOBAL",
            "html": "big",
            "images": [{"id": "att_img_1", "name": "big.jpg", "mime": "image/jpeg",
                        "thumb": "data:image/jpeg;base64," + "A" * 20_000}],
        }])

        tight = LocalStore(db_path, quota_bytes=4_000)
        store = PostStore(tight)
        assert store.toggle_like("p1").likes == 1

        saved = tight.get_json(STUDENT_POSTS_KEY)[0]
        assert saved["likes"] == 1
        assert saved["images"] == [{"id": "att_img_1", "name": "big.jpg", "mime": "image/jpeg"}]

    def test_gives_up_quietly_when_even_lean_does_not_fit(self, db_path, alice):
        store = PostStore(LocalStore(db_path, quota_bytes=50))
        post = store.create_post(alice, draft_for(alice))
        assert store.get(post.id) is post


class TestMutations:
    """Likes, comments, replies and deletion."""

    def test_toggle_like(self, store, local, alice):
        post = store.create_post(alice, draft_for(alice))
        store.toggle_like(post.id)
        assert PostStore(local).get(post.id).likes == 1
        store.toggle_like(post.id)
        assert PostStore(local).get(post.id).likes == 0
        assert store.toggle_like("missing") is None

    def test_comment_and_reply(self, store, alice, bob):
        post = store.create_post(alice, draft_for(alice))
        comment = store.add_comment(post.id, bob, "  nice  ")
        reply = store.add_reply(post.id, comment.id, alice, "thanks")

        assert comment.text == "nice"
        assert comment.author_id == "u_bob"
        assert store.get(post.id).comments[0].replies[0].id == reply.id

    def test_blank_or_orphan_comments_ignored(self, store, alice):
        post = store.create_post(alice, draft_for(alice))
        assert store.add_comment(post.id, alice, "   ") is None
        assert store.add_comment("missing", alice, "hi") is None
        assert store.add_reply(post.id, "missing", alice, "hi") is None

    def test_only_author_may_delete(self, store, alice, bob):
        post = store.create_post(alice, draft_for(alice))
        assert store.delete_post(post.id, bob) is False
        assert store.get(post.id) is not None

        assert store.delete_post(post.id, alice) is True
        assert store.get(post.id) is None
        assert store.delete_post(post.id, alice) is False

    def test_rename_keeps_ownership(self, store, alice):
        post = store.create_post(alice, draft_for(alice))
        alice.name = "Alice Renamed"
        assert store.delete_post(post.id, alice) is True

    def test_legacy_posts_matched_by_name(self, local, alice):
        local.set_json(STUDENT_POSTS_KEY, [{"id": "p1", "createdAt": 1, "author": "Alice",
                                            "audience": "GLOBAL", "html": "old"}])
        assert PostStore(local).delete_post("p1", alice) is True

    def test_delete_reclaims_attachments(self, store, attachments, alice, bob, jpeg_bytes):
        keep = store.create_post(bob, draft_for(bob, images=[Upload("keep.jpg", jpeg_bytes, "image/jpeg")]))
        doomed = store.create_post(alice, draft_for(alice, files=[Upload("a.pdf", b"%PDF-1.4", "application/pdf")]))
        store.add_comment(doomed.id, bob, "", files=[Upload("b.txt", b"hi", "text/plain")])
        assert len(attachments.ids()) == 3

        store.delete_post(doomed.id, alice)
        assert attachments.ids() == [keep.images[0].id]

    def test_delete_keeps_blobs_of_posts_stored_elsewhere(self, db_path, store, attachments, alice, lecturer):
        mine = store.create_post(alice, draft_for(alice, files=[Upload("m.txt", b"mine", "text/plain")]))

        other_tab = PostStore(LocalStore(db_path), attachments=AttachmentStore(db_path))
        handout = other_tab.create_program_posts(
            lecturer,
            PostDraft(html="Handout", files=[Upload("h.pdf", b"%PDF-1.4", "application/pdf")]),
            programs=["Chemistry"],
            year="2",
        )[0]
        blob_id = handout.files[0].id

        assert store.delete_post(mine.id, alice) is True
        assert attachments.get(blob_id) == b"%PDF-1.4"
        store.refresh()
        assert store.get(handout.id) is not None

    def test_delete_without_reclaim_keeps_blobs(self, local, attachments, alice):
        store = PostStore(local, attachments=attachments, reclaim_attachments=False)
        post = store.create_post(alice, draft_for(alice, files=[Upload("a.pdf", b"%PDF", "application/pdf")]))
        store.delete_post(post.id, alice)
        assert len(attachments.ids()) == 1

    def test_other_writer_changes_seen_after_refresh(self, store, local, alice):
        other = PostStore(local)
        post = other.create_post(alice, draft_for(alice))
        assert store.get(post.id) is None
        store.refresh()
        assert store.get(post.id) is not None
