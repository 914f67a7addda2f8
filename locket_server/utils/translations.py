"""Localized response messages.

Services raise errors carrying stable message keys; the HTTP boundary picks
the language from ``Accept-Language`` and resolves the key here. Unknown
keys fall back to English, then to the key itself.
"""
from typing import Optional

DEFAULT_LANGUAGE = 'en'

MESSAGES = {
    'en': {
        'success': 'Success',
        'error.server': 'Server error',
        'error.not_found': 'Resource not found',
        'error.forbidden': 'You do not have permission to perform this action',
        'error.validation': 'Invalid request data',
        'error.policy': 'This action is not allowed',
        'auth.invalid_token': 'Missing or invalid token',
        'auth.token_expired': 'Token expired. Please login again',

        'conversation.created': 'Conversation created',
        'conversation.fetched': 'Conversation retrieved',
        'conversation.list': 'Conversations retrieved',
        'conversation.updated': 'Conversation updated',
        'conversation.deleted': 'Conversation deleted',
        'conversation.left': 'You left the conversation',
        'conversation.participants_added': 'Participants added',
        'conversation.participant_removed': 'Participant removed',
        'conversation.unread_count': 'Unread count retrieved',
        'conversation.not_found': 'Conversation not found',
        'conversation.not_participant': 'You are not a participant of this conversation',
        'conversation.admin_only': 'Only the group admin can perform this action',
        'conversation.cannot_remove_self': 'Use leave to remove yourself from a conversation',
        'conversation.direct_immutable': 'Participants of a direct conversation cannot be changed',
        'conversation.user_not_found': 'One or more users were not found',

        'message.sent': 'Message sent',
        'message.list': 'Messages retrieved',
        'message.fetched': 'Message retrieved',
        'message.updated': 'Message updated',
        'message.deleted': 'Message deleted',
        'message.reaction_added': 'Reaction added',
        'message.reaction_removed': 'Reaction removed',
        'message.replied': 'Reply sent',
        'message.forwarded': 'Messages forwarded',
        'message.thread': 'Thread retrieved',
        'message.pinned': 'Message pinned',
        'message.unpinned': 'Message unpinned',
        'message.search': 'Search results',
        'message.read': 'Conversation marked as read',
        'message.status_updated': 'Message status updated',
        'message.not_found': 'Message not found',
        'message.not_sender': 'Only the sender can modify this message',
        'message.edit_window_expired': 'The edit window for this message has expired',
        'message.pin_admin_only': 'Only the group admin can pin messages',
        'message.not_editable': 'This message has no text to edit',
    },
    'vi': {
        'success': 'Thành công',
        'error.server': 'Lỗi máy chủ',
        'error.not_found': 'Không tìm thấy tài nguyên',
        'error.forbidden': 'Bạn không có quyền thực hiện thao tác này',
        'error.validation': 'Dữ liệu yêu cầu không hợp lệ',
        'error.policy': 'Thao tác này không được phép',
        'auth.invalid_token': 'Thiếu hoặc sai mã xác thực',
        'auth.token_expired': 'Phiên đăng nhập đã hết hạn',

        'conversation.created': 'Đã tạo cuộc trò chuyện',
        'conversation.fetched': 'Đã lấy cuộc trò chuyện',
        'conversation.list': 'Đã lấy danh sách cuộc trò chuyện',
        'conversation.updated': 'Đã cập nhật cuộc trò chuyện',
        'conversation.deleted': 'Đã xóa cuộc trò chuyện',
        'conversation.left': 'Bạn đã rời cuộc trò chuyện',
        'conversation.participants_added': 'Đã thêm thành viên',
        'conversation.participant_removed': 'Đã xóa thành viên',
        'conversation.unread_count': 'Đã lấy số tin chưa đọc',
        'conversation.not_found': 'Không tìm thấy cuộc trò chuyện',
        'conversation.not_participant': 'Bạn không phải thành viên của cuộc trò chuyện này',
        'conversation.admin_only': 'Chỉ quản trị viên nhóm mới có thể thực hiện thao tác này',
        'conversation.cannot_remove_self': 'Hãy dùng chức năng rời nhóm để tự rời cuộc trò chuyện',
        'conversation.direct_immutable': 'Không thể thay đổi thành viên của cuộc trò chuyện riêng',
        'conversation.user_not_found': 'Không tìm thấy một hoặc nhiều người dùng',

        'message.sent': 'Đã gửi tin nhắn',
        'message.list': 'Đã lấy tin nhắn',
        'message.fetched': 'Đã lấy tin nhắn',
        'message.updated': 'Đã cập nhật tin nhắn',
        'message.deleted': 'Đã xóa tin nhắn',
        'message.reaction_added': 'Đã thêm cảm xúc',
        'message.reaction_removed': 'Đã gỡ cảm xúc',
        'message.replied': 'Đã trả lời',
        'message.forwarded': 'Đã chuyển tiếp tin nhắn',
        'message.thread': 'Đã lấy chuỗi trả lời',
        'message.pinned': 'Đã ghim tin nhắn',
        'message.unpinned': 'Đã bỏ ghim tin nhắn',
        'message.search': 'Kết quả tìm kiếm',
        'message.read': 'Đã đánh dấu đã đọc',
        'message.status_updated': 'Đã cập nhật trạng thái tin nhắn',
        'message.not_found': 'Không tìm thấy tin nhắn',
        'message.not_sender': 'Chỉ người gửi mới có thể sửa tin nhắn này',
        'message.edit_window_expired': 'Đã hết thời gian cho phép sửa tin nhắn này',
        'message.pin_admin_only': 'Chỉ quản trị viên nhóm mới có thể ghim tin nhắn',
        'message.not_editable': 'Tin nhắn này không có nội dung để sửa',
    },
}


def resolve_language(accept_language: Optional[str]) -> str:
    """Pick the first supported language from an Accept-Language header."""
    if not accept_language:
        return DEFAULT_LANGUAGE
    for part in accept_language.split(','):
        code = part.split(';')[0].strip().lower().split('-')[0]
        if code in MESSAGES:
            return code
    return DEFAULT_LANGUAGE


def translate(key: str, language: str = DEFAULT_LANGUAGE) -> str:
    table = MESSAGES.get(language, MESSAGES[DEFAULT_LANGUAGE])
    return table.get(key) or MESSAGES[DEFAULT_LANGUAGE].get(key) or key
