"""Generated documentation endpoints."""

from fastapi import APIRouter, Depends, Query
from fastapi.responses import Response

from repodocs.api.deps import get_store
from repodocs.api.errors import http_error
from repodocs.api.schemas import ChapterContent, LinkRequest, ProjectMeta
from repodocs.errors import RepoDocsError
from repodocs.output.store import OutputStore

router = APIRouter(prefix="/api/docs", tags=["docs"])


@router.get("", response_model=list[ProjectMeta])
async def list_projects(
    user_id: str | None = Query(default=None, alias="userId"),
    linked_project_id: str | None = Query(default=None, alias="linkedProjectId"),
    store: OutputStore = Depends(get_store),
) -> list[ProjectMeta]:
    """List generated projects, newest first."""
    if linked_project_id is not None:
        meta = store.find_linked(linked_project_id)
        metas = [meta] if meta and (user_id is None or meta.get("userId") == user_id) else []
    else:
        metas = store.list(user_id)
    return [ProjectMeta.model_validate(meta) for meta in metas]


@router.get("/{slug}", response_model=ProjectMeta)
async def get_project(slug: str, store: OutputStore = Depends(get_store)) -> ProjectMeta:
    """Get a project's metadata."""
    try:
        return ProjectMeta.model_validate(store.get_meta(slug))
    except RepoDocsError as e:
        raise http_error(e)


@router.get("/{slug}/download")
async def download_project(slug: str, store: OutputStore = Depends(get_store)) -> Response:
    """Download every file of a project as a zip archive."""
    try:
        archive = store.download_zip(slug)
    except RepoDocsError as e:
        raise http_error(e)
    return Response(
        content=archive,
        media_type="application/zip",
        headers={"Content-Disposition": f'attachment; filename="{slug}.zip"'},
    )


@router.get("/{slug}/{filename}", response_model=ChapterContent)
async def read_chapter(
    slug: str, filename: str, store: OutputStore = Depends(get_store)
) -> ChapterContent:
    """Get a chapter's markdown with its frontmatter stripped.

    ``-1_overview.md`` and ``index.md`` both resolve to the overview.
    """
    try:
        content = store.read(slug, filename)
    except RepoDocsError as e:
        raise http_error(e)
    return ChapterContent(slug=slug, filename=filename, content=content)


@router.patch("/{slug}/link", response_model=ProjectMeta)
async def link_project(
    slug: str, body: LinkRequest, store: OutputStore = Depends(get_store)
) -> ProjectMeta:
    """Link a project to an external project record, or unlink it."""
    try:
        meta = store.update_meta(slug, linkedProjectId=body.linked_project_id)
    except RepoDocsError as e:
        raise http_error(e)
    return ProjectMeta.model_validate(meta)


@router.delete("/{slug}")
async def delete_project(slug: str, store: OutputStore = Depends(get_store)) -> dict:
    """Delete a project and all of its files."""
    try:
        store.delete(slug)
    except RepoDocsError as e:
        raise http_error(e)
    return {"success": True, "projectSlug": slug}
