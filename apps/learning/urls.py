from django.urls import path

from .views import ChapterProgressAPIView, CourseOutlineAPIView, CourseProgressAPIView, MyCoursesProgressAPIView

app_name = "learning"

urlpatterns = [
    path("chapters/<int:chapter_id>/progress/", ChapterProgressAPIView.as_view(), name="chapter-progress"),
    path("courses/", MyCoursesProgressAPIView.as_view(), name="my-courses"),
    path("courses/<int:course_id>/progress/", CourseProgressAPIView.as_view(), name="course-progress"),
    path("courses/<int:course_id>/outline/", CourseOutlineAPIView.as_view(), name="course-outline"),
]
