# moda/api/folders.py
from fastapi import APIRouter, Depends, HTTPException
from sqlalchemy.orm import Session
from typing import List, Optional
import logging
from ..database import get_db
from ..models.folder import DrawingFolder, FolderType
from ..schemas.folder import (
    FolderCreate,
    FolderUpdate,
    FolderResponse,
    ModuleFolderCreate,
    FolderDefaultsRequest,
)
from ..services.folder_paths import resolve_module_package_folder_name

logger = logging.getLogger(__name__)

router = APIRouter()

# Default folder tree for a new project: category -> disciplines (name, color)
DEFAULT_FOLDERS = [
    ("Permit Drawings", "bg-blue-100 border-blue-500", [
        ("AOR Reference Submittal", "bg-amber-100 border-amber-400"),
        ("Architectural General Submittal", "bg-blue-100 border-blue-400"),
        ("Assembly Book Submittal", "bg-purple-100 border-purple-400"),
        ("Electrical Submittal", "bg-yellow-100 border-yellow-400"),
        ("Fire Alarm Data Submittal", "bg-red-100 border-red-400"),
        ("Fire Alarm Submittal", "bg-red-100 border-red-400"),
        ("Fire Sprinkler Submittal", "bg-orange-100 border-orange-400"),
        ("Mechanical Submittal", "bg-cyan-100 border-cyan-400"),
        ("Modular Architect Submittal", "bg-indigo-100 border-indigo-400"),
        ("Plumbing Submittal", "bg-teal-100 border-teal-400"),
        ("Sprinkler Submittal Plans", "bg-orange-100 border-orange-400"),
        ("Structural Documents", "bg-gray-100 border-gray-400"),
        ("Structural Plans Submittal", "bg-slate-100 border-slate-400"),
        ("Title 24", "bg-green-100 border-green-400"),
    ]),
    ("Shop Drawings", "bg-amber-100 border-amber-500", [
        ("Soffits", "bg-slate-100 border-slate-400"),
        ("Reference Sheets", "bg-blue-100 border-blue-400"),
        ("Prototype Drawings", "bg-purple-100 border-purple-400"),
        ("Interior Walls", "bg-cyan-100 border-cyan-400"),
        ("End Walls", "bg-teal-100 border-teal-400"),
        ("Corridor Walls", "bg-amber-100 border-amber-400"),
        ("3HR Walls", "bg-red-100 border-red-400"),
        ("Module Packages", "bg-indigo-100 border-indigo-400"),
    ]),
]

# Allowed parent type per folder type
PARENT_TYPES = {
    FolderType.CATEGORY: None,
    FolderType.DISCIPLINE: FolderType.CATEGORY,
    FolderType.MODULE: FolderType.DISCIPLINE,
}

def _project_folders(db: Session, project_id: str) -> List[DrawingFolder]:
    return (
        db.query(DrawingFolder)
        .filter(DrawingFolder.project_id == project_id)
        .order_by(DrawingFolder.sort_order.asc())
        .all()
    )

def _create_defaults(db: Session, project_id: str, created_by: Optional[str]):
    for category_order, (category_name, category_color, disciplines) in enumerate(DEFAULT_FOLDERS, start=1):
        category = DrawingFolder(
            project_id=project_id,
            name=category_name,
            folder_type=FolderType.CATEGORY,
            color=category_color,
            sort_order=category_order,
            is_default=True,
            created_by=created_by,
        )
        db.add(category)
        db.flush()  # need category.id for the children
        for order, (name, color) in enumerate(disciplines, start=1):
            db.add(DrawingFolder(
                project_id=project_id,
                parent_id=category.id,
                name=name,
                folder_type=FolderType.DISCIPLINE,
                color=color,
                sort_order=order,
                is_default=True,
                created_by=created_by,
            ))

def _get_folder(db: Session, project_id: str, folder_id: str) -> DrawingFolder:
    folder = db.query(DrawingFolder).filter(
        DrawingFolder.id == folder_id,
        DrawingFolder.project_id == project_id
    ).first()
    if not folder:
        raise HTTPException(status_code=404, detail=f"Folder {folder_id} not found in project {project_id}")
    return folder

def _check_unique_name(db: Session, project_id: str, parent_id: Optional[str], name: str, exclude_id: Optional[str] = None):
    query = db.query(DrawingFolder).filter(
        DrawingFolder.project_id == project_id,
        DrawingFolder.parent_id == parent_id if parent_id else DrawingFolder.parent_id.is_(None),
        DrawingFolder.name == name,
    )
    if exclude_id:
        query = query.filter(DrawingFolder.id != exclude_id)
    if query.first():
        raise HTTPException(status_code=409, detail=f"A folder named '{name}' already exists here")

@router.get("/projects/{project_id}/folders", response_model=List[FolderResponse])
def list_folders(project_id: str, db: Session = Depends(get_db)):
    """
    All folders of a project (flat list; rebuild the tree from parent_id)
    """
    return _project_folders(db, project_id)

@router.post("/projects/{project_id}/folders/defaults", response_model=List[FolderResponse])
def initialize_default_folders(
    project_id: str,
    request: FolderDefaultsRequest = FolderDefaultsRequest(),
    db: Session = Depends(get_db)
):
    """
    Create the default Permit/Shop Drawings tree unless the project already has folders
    """
    existing = _project_folders(db, project_id)
    if existing:
        return existing
    _create_defaults(db, project_id, request.created_by)
    db.commit()
    logger.info(f"[Folders] Initialized default folders for project {project_id}")
    return _project_folders(db, project_id)

@router.post("/projects/{project_id}/folders/reset", response_model=List[FolderResponse])
def reset_default_folders(
    project_id: str,
    request: FolderDefaultsRequest = FolderDefaultsRequest(),
    db: Session = Depends(get_db)
):
    """
    Delete every folder of the project and recreate the defaults.
    Drawings are not touched; they reference disciplines by id or name.
    """
    # Children first so parent_id never dangles
    folders = _project_folders(db, project_id)
    depth = {FolderType.MODULE: 0, FolderType.DISCIPLINE: 1, FolderType.CATEGORY: 2}
    for folder in sorted(folders, key=lambda f: depth[f.folder_type]):
        db.delete(folder)
    db.flush()
    _create_defaults(db, project_id, request.created_by)
    db.commit()
    logger.info(f"[Folders] Reset folders for project {project_id}")
    return _project_folders(db, project_id)

@router.post("/projects/{project_id}/folders", response_model=FolderResponse, status_code=201)
def create_folder(project_id: str, folder_data: FolderCreate, db: Session = Depends(get_db)):
    """Create a category, discipline or module folder"""
    expected_parent = PARENT_TYPES[folder_data.folder_type]
    if expected_parent is None:
        if folder_data.parent_id:
            raise HTTPException(status_code=400, detail="Category folders cannot have a parent")
    else:
        if not folder_data.parent_id:
            raise HTTPException(status_code=400, detail=f"A {folder_data.folder_type.value} folder needs a {expected_parent.value} parent")
        parent = _get_folder(db, project_id, folder_data.parent_id)
        if parent.folder_type != expected_parent:
            raise HTTPException(
                status_code=400,
                detail=f"A {folder_data.folder_type.value} folder must sit inside a {expected_parent.value} folder"
            )

    _check_unique_name(db, project_id, folder_data.parent_id, folder_data.name)

    folder = DrawingFolder(
        project_id=project_id,
        parent_id=folder_data.parent_id,
        name=folder_data.name,
        folder_type=folder_data.folder_type,
        color=folder_data.color or "bg-gray-100 border-gray-400",
        sort_order=folder_data.sort_order,
        created_by=folder_data.created_by,
    )
    db.add(folder)
    db.commit()
    db.refresh(folder)
    return folder

@router.post("/projects/{project_id}/folders/modules", response_model=FolderResponse, status_code=201)
def create_module_folder(project_id: str, module_data: ModuleFolderCreate, db: Session = Depends(get_db)):
    """
    Create (or return) the package folder of a module inside a discipline.
    The name follows the module package rule, e.g. "B1L2M15 | BLM-A / BLM-B".
    """
    parent = _get_folder(db, project_id, module_data.discipline_folder_id)
    if parent.folder_type != FolderType.DISCIPLINE:
        raise HTTPException(status_code=400, detail="Module folders must sit inside a discipline folder")

    name = resolve_module_package_folder_name(module_data.serial_number, module_data.hitch_blm, module_data.rear_blm)
    if not name:
        raise HTTPException(status_code=400, detail="serial_number is required")

    existing = db.query(DrawingFolder).filter(
        DrawingFolder.project_id == project_id,
        DrawingFolder.parent_id == parent.id,
        DrawingFolder.name == name,
    ).first()
    if existing:
        return existing

    sibling_count = db.query(DrawingFolder).filter(DrawingFolder.parent_id == parent.id).count()
    folder = DrawingFolder(
        project_id=project_id,
        parent_id=parent.id,
        name=name,
        folder_type=FolderType.MODULE,
        sort_order=sibling_count + 1,
        created_by=module_data.created_by,
    )
    db.add(folder)
    db.commit()
    db.refresh(folder)
    return folder

@router.patch("/projects/{project_id}/folders/{folder_id}", response_model=FolderResponse)
def update_folder(project_id: str, folder_id: str, updates: FolderUpdate, db: Session = Depends(get_db)):
    folder = _get_folder(db, project_id, folder_id)
    if updates.name is not None:
        _check_unique_name(db, project_id, folder.parent_id, updates.name, exclude_id=folder.id)
        folder.name = updates.name
    if updates.color is not None:
        folder.color = updates.color
    if updates.sort_order is not None:
        folder.sort_order = updates.sort_order
    db.commit()
    db.refresh(folder)
    return folder

@router.delete("/projects/{project_id}/folders/{folder_id}", status_code=204)
def delete_folder(project_id: str, folder_id: str, db: Session = Depends(get_db)):
    """Delete a folder and its subfolders"""
    folder = _get_folder(db, project_id, folder_id)
    db.delete(folder)
    db.commit()
    return
