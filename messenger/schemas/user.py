"""
User request/response schemas
"""

from pydantic import BaseModel, ConfigDict, Field


class UserRegister(BaseModel):
    """Schema for registering the signed-in user"""

    first_name: str = Field(..., min_length=1, max_length=100, alias="firstName")
    last_name: str = Field("", max_length=100, alias="lastName")

    model_config = ConfigDict(
        populate_by_name=True,
        json_schema_extra={
            "example": {
                "firstName": "Alice",
                "lastName": "Smith",
            }
        },
    )


class UserExistsResponse(BaseModel):
    exists: bool


class UserResponse(BaseModel):
    """Public profile of a user"""

    email: str = Field(..., description="Safe identity")
    first_name: str = Field(..., alias="firstName")
    last_name: str = Field(..., alias="lastName")
    display_name: str = Field(..., alias="displayName")

    model_config = ConfigDict(populate_by_name=True)
