from django.test import SimpleTestCase, TestCase

from apps.catalog.capabilities import AccessCapabilities
from apps.catalog.refs import ContentKind, ContentRef, load_content, storefront_id_of, storefront_pk
from apps.common.errors import InvalidInput, NotFoundError
from apps.common.testing import add_chapters, make_course, make_storefront, make_user


class ContentRefParsingTests(SimpleTestCase):
    def test_parse_accepts_string_ids_and_mixed_case_kinds(self) -> None:
        ref = ContentRef.parse("Course", " 12 ")
        self.assertEqual(ref, ContentRef.course(12))
        self.assertEqual(ref.kind, ContentKind.COURSE)
        self.assertEqual(str(ref), "course:12")

    def test_from_string_round_trips_display_form(self) -> None:
        self.assertEqual(ContentRef.from_string("bundle:7"), ContentRef.bundle(7))

    def test_rejects_unknown_kind_and_bad_ids(self) -> None:
        for kind, raw_id in [("lecture", 1), ("course", "abc"), ("course", 0), ("product", -4), ("chapter", None)]:
            with self.subTest(kind=kind, raw_id=raw_id):
                with self.assertRaises(InvalidInput):
                    ContentRef.parse(kind, raw_id)

    def test_from_string_requires_separator(self) -> None:
        with self.assertRaises(InvalidInput):
            ContentRef.from_string("course-3")

    def test_bool_is_not_an_id(self) -> None:
        with self.assertRaises(InvalidInput):
            ContentRef(ContentKind.COURSE, True)

    def test_refs_are_hashable_values(self) -> None:
        refs = {ContentRef.course(1), ContentRef.parse("course", "1"), ContentRef.product(1)}
        self.assertEqual(len(refs), 2)

    def test_storefront_pk_validation(self) -> None:
        self.assertEqual(storefront_pk(5), 5)
        for bad in (None, 0, "5", True):
            with self.subTest(bad=bad):
                with self.assertRaises(InvalidInput):
                    storefront_pk(bad)


class ContentLookupTests(TestCase):
    def setUp(self) -> None:
        self.owner = make_user("owner")
        self.storefront = make_storefront(self.owner)
        self.course = make_course(self.storefront)
        self.chapter = add_chapters(self.course, 1)[0]

    def test_load_content_and_storefront_of_chapter(self) -> None:
        chapter = load_content(ContentRef.chapter(self.chapter.pk))
        self.assertEqual(chapter.pk, self.chapter.pk)
        self.assertEqual(storefront_id_of(chapter), self.storefront.pk)
        self.assertEqual(ContentRef.for_instance(self.course), ContentRef.course(self.course.pk))

    def test_missing_content_raises_not_found(self) -> None:
        with self.assertRaises(NotFoundError) as ctx:
            load_content(ContentRef.product(999))
        self.assertEqual(ctx.exception.kind, "DigitalProduct")

    def test_owner_capabilities(self) -> None:
        other = make_user("visitor")
        self.assertTrue(AccessCapabilities.for_owner(self.owner).is_admin_for(self.storefront.pk))
        self.assertFalse(AccessCapabilities.for_owner(other).is_admin_for(self.storefront.pk))
        self.assertFalse(AccessCapabilities.for_owner(None).is_admin_for(self.storefront.pk))
