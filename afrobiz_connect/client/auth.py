"""Authentication endpoints."""
from typing import Any, Dict, Optional

from .api import APIClient, ProgressCallback
from .schemas import AuthResponse, LoginCredentials, RegisterData, UploadFile, User


class AuthService:
    def __init__(self, api: APIClient):
        self.api = api

    async def login(self, credentials: LoginCredentials) -> AuthResponse:
        response = await self.api.post("/auth/login", credentials.to_wire(), requires_auth=False)
        return AuthResponse.model_validate(response.raise_for_success("Login failed"))

    async def register(self, data: RegisterData) -> AuthResponse:
        response = await self.api.post("/auth/register", data.to_wire(), requires_auth=False)
        return AuthResponse.model_validate(response.raise_for_success("Registration failed"))

    async def logout(self) -> None:
        await self.api.post("/auth/logout", {})

    async def update_profile(self, updates: Dict[str, Any]) -> User:
        response = await self.api.patch("/auth/profile", updates)
        return User.model_validate(response.raise_for_success("Profile update failed"))

    async def update_business_profile(self, updates: Dict[str, Any]) -> User:
        response = await self.api.patch("/auth/business-profile", updates)
        return User.model_validate(response.raise_for_success("Business profile update failed"))

    async def change_password(self, current_password: str, new_password: str) -> None:
        response = await self.api.post(
            "/auth/change-password",
            {"currentPassword": current_password, "newPassword": new_password},
        )
        response.raise_for_success("Password change failed", require_data=False)

    async def request_password_reset(self, email: str) -> None:
        response = await self.api.post("/auth/forgot-password", {"email": email}, requires_auth=False)
        response.raise_for_success("Password reset request failed", require_data=False)

    async def reset_password(self, token: str, new_password: str) -> None:
        response = await self.api.post(
            "/auth/reset-password", {"token": token, "newPassword": new_password}, requires_auth=False
        )
        response.raise_for_success("Password reset failed", require_data=False)

    async def verify_email(self, token: str) -> Optional[User]:
        response = await self.api.post("/auth/verify-email", {"token": token}, requires_auth=False)
        data = response.raise_for_success("Email verification failed", require_data=False)
        return User.model_validate(data) if data else None

    async def resend_email_verification(self) -> None:
        response = await self.api.post("/auth/resend-verification")
        response.raise_for_success("Failed to resend verification email", require_data=False)

    async def upload_avatar(
        self, content: bytes, filename: str = "avatar.jpg", on_progress: Optional[ProgressCallback] = None
    ) -> str:
        avatar = UploadFile(field="avatar", filename=filename, content=content, content_type="image/jpeg")
        response = await self.api.upload("/auth/upload-avatar", [avatar], on_progress=on_progress)
        data = response.raise_for_success("Avatar upload failed")
        return data["avatarUrl"]
