from tests.image_factory import DATE_TIME_ORIGINAL, make_jpeg_bytes


def _dated(when, make="Canon", model="EOS R5"):
    return make_jpeg_bytes(make=make, model=model, exif_ifd={DATE_TIME_ORIGINAL: when})


def test_metadata_search_by_field(client, auth_header, upload):
    canon = upload(auth_header, title="harbour")
    upload(auth_header, title="forest", data=make_jpeg_bytes(make="Nikon", model="Z6"))

    r = client.get("/search/metadata", headers=auth_header, params={"exif.camera": "eos r5"})
    assert r.status_code == 200, r.text
    body = r.json()
    assert [hit["id"] for hit in body["results"]] == [canon["id"]]
    assert body["results"][0]["metadata"]["camera"] == "Canon EOS R5"
    assert body["results"][0]["url"] == canon["url"]
    assert (body["total"], body["page"], body["pages"]) == (1, 1, 1)


def test_metadata_search_by_capture_date(client, auth_header, upload):
    may = upload(auth_header, title="may", data=_dated("2024:05:01 21:15:00"))
    upload(auth_header, title="june", data=_dated("2024:06:02 09:00:00"))
    upload(auth_header, title="undated")

    r = client.get(
        "/search/metadata", headers=auth_header, params={"date_from": "2024-05-01", "date_to": "2024-05-01"}
    )
    body = r.json()
    assert [hit["id"] for hit in body["results"]] == [may["id"]]
    assert body["results"][0]["metadata"]["captureDate"] == "2024:05:01 21:15:00"

    after = client.get("/search/metadata", headers=auth_header, params={"date_from": "2024-05-02"}).json()
    assert [hit["title"] for hit in after["results"]] == ["june"]


def test_metadata_search_sees_edits_immediately(client, auth_header, upload):
    image = upload(auth_header)
    params = {"exif.camera": "canon"}
    assert client.get("/search/metadata", headers=auth_header, params=params).json()["total"] == 1

    r = client.post(f"/images/{image['id']}/metadata/strip", headers=auth_header)
    assert r.status_code == 200, r.text
    assert client.get("/search/metadata", headers=auth_header, params=params).json()["total"] == 0

    edited = {"basic": {"title": "sample"}, "exif": {"camera": "Canon EOS R6"}}
    client.put(f"/images/{image['id']}/metadata", headers=auth_header, json={"metadata": edited})
    found = client.get("/search/metadata", headers=auth_header, params={"exif.camera": "r6"}).json()
    assert [hit["id"] for hit in found["results"]] == [image["id"]]


def test_metadata_search_respects_visibility(client, auth_header, other_auth_header, upload):
    upload(auth_header, title="private")
    public = upload(auth_header, title="public", visibility="public")
    params = {"exif.camera": "canon"}

    assert client.get("/search/metadata", headers=auth_header, params=params).json()["total"] == 2
    for headers in (other_auth_header, {}):
        body = client.get("/search/metadata", headers=headers, params=params).json()
        assert [hit["id"] for hit in body["results"]] == [public["id"]]

    client.patch("/images/visibility", headers=auth_header, json={"image_ids": [public["id"]], "visibility": "private"})
    assert client.get("/search/metadata", params=params).json()["total"] == 0


def test_metadata_search_combines_text_and_tags(client, auth_header, upload):
    upload(auth_header, title="Harbour at dusk", tags="sea")
    upload(auth_header, title="Harbour at noon", tags="city")
    r = client.get(
        "/search/metadata", headers=auth_header, params={"q": "harbour", "tags": "sea", "exif.make": "canon"}
    )
    assert [hit["title"] for hit in r.json()["results"]] == ["Harbour at dusk"]


def test_metadata_search_rejects_bad_input(client):
    assert client.get("/search/metadata", params={"camera": "canon"}).status_code == 400
    assert client.get("/search/metadata", params={"secret.key": "x"}).status_code == 400
    r = client.get("/search/metadata", params={"date_from": "2024-05-02", "date_to": "2024-05-01"})
    assert r.status_code == 400
    assert client.get("/search/metadata", params={"date_from": "May 1st"}).status_code == 422
    assert client.get("/search/metadata", params={"sort": "random"}).status_code == 400


def test_filter_options(client, auth_header, other_auth_header, upload):
    upload(auth_header, title="a")
    upload(auth_header, title="b")
    upload(auth_header, title="c", data=make_jpeg_bytes(w=30, h=10, make="Nikon", model="Z6"))
    upload(other_auth_header, title="hidden", data=make_jpeg_bytes(make="Sony", model="A7"))

    body = client.get("/filters/options", headers=auth_header).json()
    assert body["cameras"] == [{"value": "Canon EOS R5", "count": 2}, {"value": "Nikon Z6", "count": 1}]
    assert body["formats"] == [{"value": "jpeg", "count": 3}]
    dimensions = {d["value"]: d["count"] for d in body["dimensions"]}
    assert dimensions == {"landscape": 3, "portrait": 0, "square": 0, "panorama": 1}

    single = client.get("/filters/options", headers=auth_header, params={"field": "make", "limit": 1}).json()
    assert single == {"field": "make", "values": [{"value": "Canon", "count": 2}]}

    assert client.get("/filters/options").json()["cameras"] == []
    assert client.get("/filters/options", params={"field": "shutter"}).status_code == 400
    assert client.get("/filters/options", params={"limit": 0}).status_code == 422
