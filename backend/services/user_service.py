from core.errors import CredentialStoreError, DuplicateEmailError, ErrorKind, ServiceResult
from core.security import TokenIssuer, get_password_hash, verify_password
from services.credential_store import CredentialStore
from services.otp import normalize_email
from utils.timing import timeit
import logging

logger = logging.getLogger(__name__)


class AccountService:
    """Registration, login, logout and profile lookup."""

    def __init__(self, credentials: CredentialStore, tokens: TokenIssuer):
        self.credentials = credentials
        self.tokens = tokens

    @timeit("accounts.register")
    async def register(self, name: str, email: str, password: str) -> ServiceResult:
        email = normalize_email(email)
        try:
            if await self.credentials.find_by_email(email):
                return ServiceResult.fail(
                    ErrorKind.VALIDATION_FAILED,
                    "Validation failed.",
                    errors={"email": ["The email has already been taken."]},
                )
            user = await self.credentials.create(name.strip(), email, get_password_hash(password))
            logger.info(f"Registered user {user.id} ({email})")
            return ServiceResult.ok("User registered successfully", data=user.public(), status_code=201)
        except DuplicateEmailError:
            return ServiceResult.fail(
                ErrorKind.VALIDATION_FAILED,
                "Validation failed.",
                errors={"email": ["The email has already been taken."]},
            )
        except Exception as e:
            logger.error(f"Error registering user: {e}")
            return ServiceResult.fail(ErrorKind.INTERNAL, "Failed to register user.")

    @timeit("accounts.login")
    async def login(self, email: str, password: str) -> ServiceResult:
        try:
            user = await self.credentials.find_by_email(email)
            if not user or not verify_password(password, user.hashed_password):
                return ServiceResult.fail(ErrorKind.UNAUTHORIZED, "Unauthorized. Invalid credentials.")
            token = self.tokens.issue({"sub": user.id, "email": user.email, "name": user.name})
            logger.info(f"User {user.id} logged in")
            return ServiceResult.ok(
                "Login successful",
                data={"token": token, "token_type": "bearer", "expires_in": self.tokens.expires_in},
            )
        except CredentialStoreError as e:
            logger.error(f"Login error: {e}")
            return ServiceResult.fail(ErrorKind.INTERNAL, "Login failed.")

    async def me(self, identity: dict) -> ServiceResult:
        try:
            user = await self.credentials.find_by_id(identity.get("sub"))
        except CredentialStoreError as e:
            logger.error(f"Error fetching user: {e}")
            return ServiceResult.fail(ErrorKind.INTERNAL, "Failed to fetch user details.")
        if not user:
            return ServiceResult.fail(ErrorKind.UNAUTHORIZED, "Unauthenticated.")
        return ServiceResult.ok("User details fetched successfully.", data=user.public())

    async def logout(self, token: str) -> ServiceResult:
        try:
            if not await self.tokens.invalidate(token):
                return ServiceResult.fail(ErrorKind.UNAUTHORIZED, "Unauthenticated.")
        except Exception as e:
            logger.error(f"Logout error: {e}")
            return ServiceResult.fail(ErrorKind.INTERNAL, "Failed to logout.")
        return ServiceResult.ok("Successfully logged out")
