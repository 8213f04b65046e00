from django.urls import path

from . import views

urlpatterns = [
    path('cart/', views.CartView.as_view(), name='api_cart'),
    path('cart/store/', views.SelectStoreView.as_view(), name='api_select_store'),
    path('cart/items/', views.CartItemsView.as_view(), name='api_cart_items'),
    path('cart/items/<str:product_id>/', views.CartItemDetailView.as_view(), name='api_cart_item'),
    path('cart/discount/', views.DiscountView.as_view(), name='api_discount'),
    path('tender/', views.TenderView.as_view(), name='api_tender'),
    path('checkout/', views.CheckoutView.as_view(), name='api_checkout'),
    path('checkout/retry/', views.CheckoutRetryView.as_view(), name='api_checkout_retry'),
    path('checkout/cancel/', views.CheckoutCancelView.as_view(), name='api_checkout_cancel'),
    path('products/', views.ProductListView.as_view(), name='api_products'),
    path('stores/', views.StoreListView.as_view(), name='api_stores'),
    path('categories/', views.CategoryListView.as_view(), name='api_categories'),
    path('sales/today/', views.TodayStatsView.as_view(), name='api_today_stats'),
]
