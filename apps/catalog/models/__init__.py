from .models import Bundle, Course, DigitalProduct, Storefront

__all__ = ["Bundle", "Course", "DigitalProduct", "Storefront"]
