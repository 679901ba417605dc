# release.py
from __future__ import annotations

import json
import urllib.error
import urllib.request
from pathlib import Path
from typing import Iterable, List, Optional
from urllib.parse import quote, urljoin

from pydantic import BaseModel, Field

from .errors import PublishRejection
from .model import Release


class APIError(Exception):
    """Raised when release API requests fail."""

    def __init__(self, message: str, status: Optional[int] = None, body: str = ""):
        super().__init__(message)
        self.status = status
        self.body = body


# -------------------- Schemas --------------------

class CreateReleaseRequest(BaseModel):
    tag_name: str
    name: str
    draft: bool = False
    prerelease: bool = False


class ReleaseAsset(BaseModel):
    id: int
    name: str
    size: int = 0


class UpdateReleaseRequest(BaseModel):
    draft: bool


class ReleaseResponse(BaseModel):
    id: int
    tag_name: str
    name: Optional[str] = None
    draft: bool = False
    html_url: str = ""
    upload_url: str
    assets: List[ReleaseAsset] = Field(default_factory=list)


# -------------------- Client --------------------

class ReleaseClient:
    """HTTP client for the source-control release API (GitHub flavoured)."""

    def __init__(
        self,
        repository: str,
        token: str,
        api_url: str = "https://api.github.com",
        timeout: Optional[float] = None,
    ):
        """
        Args:
            repository: "owner/name"
            token: source-control write token, used for this client only
            api_url: API base URL
            timeout: socket timeout in seconds for each request (None blocks)
        """
        if repository.count("/") != 1:
            raise ValueError(f"repository must be 'owner/name', got {repository!r}")
        self.repository = repository
        self.base_url = api_url.rstrip("/")
        self._token = token
        self.timeout = timeout

    def __repr__(self) -> str:
        return f"ReleaseClient(repository={self.repository!r}, api_url={self.base_url!r})"

    def _request(
        self,
        method: str,
        url: str,
        data: Optional[bytes] = None,
        content_type: str = "application/json",
    ) -> dict:
        if not url.startswith("http"):
            url = urljoin(self.base_url + "/", url.lstrip("/"))

        req_headers = {
            "Accept": "application/vnd.github+json",
            "Authorization": f"Bearer {self._token}",
            "Content-Type": content_type,
            "User-Agent": "releaseci",
        }
        req = urllib.request.Request(url, data=data, headers=req_headers, method=method)

        try:
            with urllib.request.urlopen(req, timeout=self.timeout) as response:
                response_data = response.read().decode("utf-8")
                if response_data:
                    return json.loads(response_data)
                return {}
        except urllib.error.HTTPError as e:
            error_body = e.read().decode("utf-8") if e.fp else ""
            raise APIError(f"API request failed: {e.code} {e.reason}. {error_body}", e.code, error_body)
        except urllib.error.URLError as e:
            raise APIError(f"Network error: {e.reason}")
        except TimeoutError as e:
            raise APIError(f"Request timed out after {self.timeout}s: {e}")
        except json.JSONDecodeError as e:
            raise APIError(f"Invalid JSON response: {e}")

    def get_release(self, tag: str) -> Optional[ReleaseResponse]:
        """Existing release for `tag`, or None."""
        try:
            data = self._request("GET", f"/repos/{self.repository}/releases/tags/{quote(tag, safe='')}")
        except APIError as e:
            if e.status == 404:
                return None
            raise
        return ReleaseResponse.model_validate(data)

    def create_release(self, tag: str, name: Optional[str] = None, draft: bool = True) -> ReleaseResponse:
        body = CreateReleaseRequest(tag_name=tag, name=name or tag, draft=draft)
        data = self._request(
            "POST",
            f"/repos/{self.repository}/releases",
            data=body.model_dump_json().encode("utf-8"),
        )
        return ReleaseResponse.model_validate(data)

    def publish_release(self, release: ReleaseResponse) -> ReleaseResponse:
        """Flip a draft release to published."""
        data = self._request(
            "PATCH",
            f"/repos/{self.repository}/releases/{release.id}",
            data=UpdateReleaseRequest(draft=False).model_dump_json().encode("utf-8"),
        )
        return ReleaseResponse.model_validate(data)

    def upload_asset(self, release: ReleaseResponse, path: Path) -> ReleaseAsset:
        # upload_url is a URI template: ".../assets{?name,label}"
        base = release.upload_url.split("{", 1)[0]
        url = f"{base}?name={quote(path.name)}"
        data = self._request("POST", url, data=path.read_bytes(), content_type="application/octet-stream")
        return ReleaseAsset.model_validate(data)


# -------------------- Publish --------------------

def create_release(
    client: ReleaseClient,
    tag: str,
    files: Iterable[str | Path],
    *,
    job: str = "release",
) -> Release:
    """
    Create the tag-named release and attach every file.

    The release is created as a draft and published only after every file
    is attached, so a failed upload never leaves a public partial release.
    An existing release for the tag is never overwritten: it is reported as
    a PublishRejection, as is any API refusal. Nothing is retried.
    """
    paths = [Path(f) for f in files]
    missing = [str(p) for p in paths if not p.is_file()]
    if missing:
        raise PublishRejection(job=job, step="collect", message="release files missing", details={"missing": missing})

    try:
        if client.get_release(tag) is not None:
            raise PublishRejection(
                job=job,
                step="create",
                message=f"release {tag!r} already exists",
                details={"repository": client.repository},
            )
        draft = client.create_release(tag, draft=True)
        for p in paths:
            client.upload_asset(draft, p)
        created = client.publish_release(draft)
    except APIError as e:
        raise PublishRejection(
            job=job,
            step="create",
            message=str(e),
            details={"repository": client.repository, "status": e.status},
        ) from e

    return Release(tag=tag, name=created.name or tag, files=tuple(paths), url=created.html_url, id=created.id)
