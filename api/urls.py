from django.urls import path
from .views import PresignUploadView, StorageEventView, VideoListView

urlpatterns = [
    path("videos/", VideoListView.as_view(), name="video_list"),
    path("storage/events/", StorageEventView.as_view(), name="storage_events"),
    path("uploads/presign/", PresignUploadView.as_view(), name="uploads_presign"),
]
