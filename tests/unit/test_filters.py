"""
Tests for gender and age appropriateness rules.
"""

import pytest


def _product(name, description="", category="Tops"):
    from recs.models import Product
    return Product(id="x", name=name, description=description, category=category)


class TestAllowedCategories:
    """Tests for allowed_categories."""

    def test_unknown_gender_is_unrestricted(self):
        from scoring.filters import allowed_categories
        assert allowed_categories(None) is None

    def test_gender_lists(self):
        """Test the per-gender category allow-lists."""
        from recs.models import Gender
        from scoring.filters import allowed_categories

        assert allowed_categories(Gender.MALE) == {"Tops", "Bottoms", "Shoes"}
        assert allowed_categories(Gender.FEMALE) == {"Dresses", "Accessories", "Shoes"}
        assert allowed_categories(Gender.OTHER) == {"Tops", "Bottoms", "Shoes", "Dresses", "Accessories"}

    def test_outfit_lists_widen_female(self):
        """Test outfits let female users wear separates."""
        from recs.models import Gender
        from scoring.filters import allowed_categories

        female = allowed_categories(Gender.FEMALE, for_outfits=True)

        assert {"Tops", "Bottoms", "Dresses"} <= female
        assert allowed_categories(Gender.MALE, for_outfits=True) == {"Tops", "Bottoms", "Shoes"}


class TestGenderKeywords:
    """Tests for violates_gender_keywords."""

    def test_opposite_gender_markers(self):
        from recs.models import Gender
        from scoring.filters import violates_gender_keywords

        assert violates_gender_keywords(Gender.MALE, _product("Women's Wrap Top"))
        assert violates_gender_keywords(Gender.FEMALE, _product("Oxford Shoes", "Classic shoes for MEN"))
        assert not violates_gender_keywords(Gender.FEMALE, _product("Women's Wrap Top"))

    def test_whole_words_only(self):
        """Test markers inside longer words do not match."""
        from recs.models import Gender
        from scoring.filters import violates_gender_keywords

        assert not violates_gender_keywords(Gender.MALE, _product("Leather Belt", "Brown leather with a brass buckle"))
        assert not violates_gender_keywords(Gender.FEMALE, _product("Thermal Henley", "Chemistry themed"))

    @pytest.mark.parametrize("gender", [None, "other"])
    def test_no_restriction_without_binary_gender(self, gender):
        from recs.models import Gender
        from scoring.filters import violates_gender_keywords

        assert not violates_gender_keywords(Gender.parse(gender), _product("Women's Wrap Top"))


class TestAgeRestriction:
    """Tests for children's product exclusion."""

    def test_child_product_detection(self):
        """Test child markers are matched in the name only."""
        from scoring.filters import is_child_product

        assert is_child_product(_product("Kids Cartoon Cap"))
        assert is_child_product(_product("Junior Rain Jacket"))
        assert not is_child_product(_product("Cap", "Loved by kids and adults"))

    @pytest.mark.parametrize("age,expected", [
        (None, False),
        (10, False),
        (12, False),
        (13, True),
        (40, True),
    ])
    def test_adults_excluded(self, age, expected):
        from scoring.filters import violates_age_restriction

        assert violates_age_restriction(age, _product("Kids Cartoon Cap")) is expected

    def test_is_excluded_combines_rules(self):
        from recs.models import Gender
        from scoring.filters import is_excluded

        assert is_excluded(Gender.MALE, 30, _product("Kids Cartoon Cap"))
        assert is_excluded(Gender.MALE, 10, _product("Girls Party Dress"))
        assert not is_excluded(Gender.FEMALE, 10, _product("Girls Party Dress"))
