from fastapi import APIRouter, Depends, File, UploadFile

from tokenmarket.core.deps import get_storage
from tokenmarket.schemas.upload import UploadOut
from tokenmarket.services.storage import LocalStorage

router = APIRouter()


@router.post("/upload", response_model=UploadOut, status_code=201)
def upload(file: UploadFile = File(...), storage: LocalStorage = Depends(get_storage)):
    url, stored_name = storage.save(file.filename or "", file.file)
    return UploadOut(url=url, filename=stored_name)
