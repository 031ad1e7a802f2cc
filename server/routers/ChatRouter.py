from fastapi import APIRouter, Depends, HTTPException, Request
from fastapi.responses import StreamingResponse

from server.dependencies.auth import verify_api_key
from server.models.requests import ChatRequestBody
from shared.models.chat import ChatRequest
from shared.models.prompt import ImageAttachment

router = APIRouter(prefix="/chat", tags=["chat"])


@router.post("")
async def chat(
    request: Request,
    body: ChatRequestBody,
    _: None = Depends(verify_api_key),
) -> StreamingResponse:
    """Stream the answer to a question as plain text.

    The session id (new or continued) is returned in the X-Session-Id header
    before the first token. A client disconnect cancels the answer.

    Args:
        request (Request): FastAPI request (provides app.state.query_service).
        body (ChatRequestBody): Question, optional scope, session, image and web search flag.
        _ (None): Auth dependency result (unused).

    Returns:
        StreamingResponse: text/plain token stream.
    """
    image = None
    if body.image:
        try:
            image = ImageAttachment.from_data_url(body.image)
        except ValueError as e:
            raise HTTPException(status_code=400, detail=str(e))

    query_service = request.app.state.query_service
    stream = await query_service.do_query(
        ChatRequest(
            question=body.question,
            document_id=body.document_id,
            session_id=body.session_id,
            use_history=body.use_history,
            image=image,
            policy=body.get_policy(),
        )
    )

    async def token_stream():
        try:
            async for token in stream:
                yield token
        finally:
            await stream.aclose()

    return StreamingResponse(
        token_stream(),
        media_type="text/plain; charset=utf-8",
        headers={"X-Session-Id": stream.session_id},
    )
