"""SQL ve kaynak program güvenlik doğrulayıcıları"""
