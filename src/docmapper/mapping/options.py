# src/docmapper/mapping/options.py

from pydantic import BaseModel, ConfigDict, Field


class MapperOptions(BaseModel):
    """Settings shared by every class a ``Mapper`` maps."""

    model_config = ConfigDict(frozen=True)

    store_nulls: bool = False
    store_empties: bool = False
    use_lower_case_collection_names: bool = False
    discriminator_field: str = Field(default="className", min_length=1)
    map_sub_packages: bool = False
