from django.urls import include, path

urlpatterns = [
    path("api/editions/", include("editions.urls")),
]
