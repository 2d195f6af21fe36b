# routers/boards.py
from uuid import UUID

from fastapi import APIRouter, Depends
from fastapi.responses import Response

from api_utils import RAListParams, parse_sort, apply_filter_map, paginate_and_respond, respond_item
from deps import get_current_admin
from schemas import BoardCreate, BoardRead, BoardUpdate
from services.reference import boards_query, create_board, delete_board, get_board, update_board
from services.scope import AdminCaller

router = APIRouter(prefix="/boards", tags=["boards"])


def to_board_read(b) -> BoardRead:
    return BoardRead.model_validate(b)


@router.get("", response_model=list[BoardRead])
async def list_boards(params: RAListParams = Depends(), caller: AdminCaller = Depends(get_current_admin)):
    qs = boards_query(caller)
    fmap = {
        "q": lambda q, v: q.filter(name__icontains=str(v)),
        "code": lambda q, v: q.filter(code=str(v).upper()),
        "state_id": lambda q, v: q.filter(state_id=v),
    }
    qs = apply_filter_map(qs, params.filters, fmap)
    order = parse_sort(params.sort, ["name", "code", "created_at"])
    return await paginate_and_respond(qs, params.skip, params.limit, order, to_board_read)


@router.get("/{board_id}", response_model=BoardRead)
async def read_board(board_id: UUID, caller: AdminCaller = Depends(get_current_admin)):
    return respond_item(await get_board(caller, board_id), to_board_read)


@router.post("", response_model=BoardRead, status_code=201)
async def add_board(payload: BoardCreate, caller: AdminCaller = Depends(get_current_admin)):
    obj = await create_board(caller, **payload.model_dump())
    return respond_item(obj, to_board_read, status_code=201)


@router.put("/{board_id}", response_model=BoardRead)
async def edit_board(board_id: UUID, payload: BoardUpdate, caller: AdminCaller = Depends(get_current_admin)):
    obj = await update_board(caller, board_id, **payload.model_dump(exclude_unset=True))
    return respond_item(obj, to_board_read)


@router.delete("/{board_id}", status_code=204)
async def remove_board(board_id: UUID, caller: AdminCaller = Depends(get_current_admin)):
    await delete_board(caller, board_id)
    return Response(status_code=204)
