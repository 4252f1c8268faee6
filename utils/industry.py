"""
Industry detection and per-industry sales context
"""

import re
import time
from typing import Optional

INDUSTRY_CONTEXTS = {
    'ecommerce': {
        'name': 'E-commerce / Tienda online',
        'benefits': [
            'recuperar hasta 30% de carritos abandonados',
            'responder preguntas de producto 24/7',
            'notificar disponibilidad y promociones automáticamente',
            'escalar fácilmente en Black Friday, Buen Fin',
        ],
        'examples': [
            'Una tienda de ropa online recuperó 30% de carritos abandonados con seguimiento automático',
            'Tienda de accesorios redujo preguntas de "¿tienen en stock?" de 50 a 5 diarias',
        ],
    },
    'servicios_profesionales': {
        'name': 'Servicios profesionales',
        'benefits': [
            'calificar leads antes de que lleguen a ti',
            'enviar cotizaciones y hacer seguimiento automático',
            'agendar consultas directamente en tu calendario',
            'responder preguntas frecuentes 24/7',
        ],
        'examples': [
            'Un despacho de abogados aumentó sus cierres 40% al hacer seguimiento automático de cotizaciones',
            'Contador redujo llamadas de "¿cuánto cobras?" filtrando por WhatsApp primero',
        ],
    },
    'salud': {
        'name': 'Salud (clínicas, dentistas, nutriólogos)',
        'benefits': [
            'reducir no-shows hasta 60% con recordatorios automáticos',
            'agendar citas 24/7 sin intervención del staff',
            'confirmar citas y reagendar automáticamente',
            'responder dudas sobre servicios y preparación',
        ],
        'examples': [
            'Clínica dental redujo no-shows de 40% a 15% con recordatorios por WhatsApp',
            'Nutrióloga liberó 3 horas diarias que usaba para agendar citas manualmente',
        ],
    },
    'educacion': {
        'name': 'Educación (cursos, academias, tutorías)',
        'benefits': [
            'responder consultas 24/7 sobre cursos y horarios',
            'enviar información de inscripción automáticamente',
            'hacer seguimiento a prospectos que no completaron inscripción',
            'notificar sobre nuevos cursos y promociones',
        ],
        'examples': [
            'Academia de idiomas aumentó inscripciones 25% con seguimiento automático',
            'Escuela de música redujo llamadas de "¿qué horarios tienen?" en 70%',
        ],
    },
    'bienes_raices': {
        'name': 'Bienes raíces',
        'benefits': [
            'pre-calificar compradores antes de mostrar propiedades',
            'enviar fichas técnicas y fotos automáticamente',
            'agendar visitas directo en tu calendario',
            'hacer seguimiento automático post-visita',
        ],
        'examples': [
            'Inmobiliaria redujo visitas "perdidas" 50% al pre-calificar por WhatsApp',
            'Agente de bienes raíces cerró 2 ventas extra al mes con seguimiento automático',
        ],
    },
    'restaurantes': {
        'name': 'Restaurantes / Food service',
        'benefits': [
            'tomar reservaciones 24/7 sin llamadas',
            'enviar menú y precios automáticamente',
            'confirmar reservaciones y reducir no-shows',
            'gestionar pedidos a domicilio de forma ordenada',
        ],
        'examples': [
            'Restaurante redujo llamadas de reservación de 30 a 5 diarias',
            'Cafetería aumentó pedidos a domicilio 40% al simplificar el proceso por WhatsApp',
        ],
    },
    'retail': {
        'name': 'Retail / Tienda física',
        'benefits': [
            'informar disponibilidad de productos al instante',
            'enviar promociones segmentadas',
            'responder preguntas de horarios y ubicación 24/7',
            'hacer seguimiento post-venta para recompra',
        ],
        'examples': [
            'Tienda de electrónicos aumentó visitas 30% al confirmar stock por WhatsApp',
            'Boutique duplicó recompras con seguimiento automático a clientes',
        ],
    },
    'generic': {
        'name': 'Negocio general',
        'benefits': [
            'responder al instante 24/7',
            'no perder ningún mensaje',
            'calificar leads automáticamente',
            'agendar citas sin intervención',
        ],
        'examples': [
            'Negocios que implementaron IA en WhatsApp ven 30-50% más conversiones',
            'El tiempo de respuesta promedio baja de horas a segundos',
        ],
    },
}

# Insertion order decides ties
INDUSTRY_KEYWORDS = {
    'ecommerce': [
        'tienda online', 'tienda en línea', 'e-commerce', 'ecommerce',
        'vendo por internet', 'shopify', 'mercado libre', 'amazon',
        'dropshipping', 'envíos', 'carrito', 'checkout',
    ],
    'servicios_profesionales': [
        'abogado', 'contador', 'consultor', 'coach', 'asesor',
        'despacho', 'freelance', 'servicios profesionales',
        'arquitecto', 'diseñador', 'marketing', 'agencia',
    ],
    'salud': [
        'clínica', 'clinica', 'dentista', 'doctor', 'médico', 'medico',
        'nutriólogo', 'nutriologo', 'psicólogo', 'psicologo', 'consultorio',
        'hospital', 'laboratorio', 'fisioterapeuta', 'veterinario', 'veterinaria',
    ],
    'educacion': [
        'escuela', 'academia', 'curso', 'clases', 'tutoría', 'tutoria',
        'universidad', 'capacitación', 'capacitacion', 'formación',
        'talleres', 'diplomado', 'certificación',
    ],
    'bienes_raices': [
        'inmobiliaria', 'bienes raíces', 'bienes raices', 'propiedades',
        'casas', 'departamentos', 'terrenos', 'renta', 'venta de casas',
        'agente inmobiliario', 'broker',
    ],
    'restaurantes': [
        'restaurante', 'café', 'cafetería', 'bar', 'comida',
        'cocina', 'catering', 'food truck', 'panadería', 'pastelería',
        'pizzería', 'taquería', 'mariscos',
    ],
    'retail': [
        'tienda', 'local', 'boutique', 'ferretería', 'papelería',
        'farmacia', 'abarrotes', 'minisuper', 'refaccionaria',
        'mueblería', 'electrodomésticos', 'ropa', 'zapatos',
    ],
}


def detect_industry(text: str, existing_industry: Optional[str] = None) -> str:
    """
    Detect the lead's industry from free text.

    A stored industry wins when it is a known key. Otherwise the first
    industry with two keyword hits is returned, then the best single
    score, then 'generic'.
    """
    if existing_industry:
        normalized = re.sub(r'[^a-z_]', '_', existing_industry.lower())
        if normalized in INDUSTRY_CONTEXTS:
            return normalized

    lower_text = (text or '').lower()
    best_match = 'generic'
    max_score = 0

    for industry, keywords in INDUSTRY_KEYWORDS.items():
        score = 0
        for keyword in keywords:
            if keyword in lower_text:
                score += 1
                if score >= 2:
                    return industry

        if score > max_score:
            max_score = score
            best_match = industry

    return best_match


def get_industry_context(industry: str) -> dict:
    return INDUSTRY_CONTEXTS.get(industry, INDUSTRY_CONTEXTS['generic'])


def get_industry_example(industry: str) -> str:
    # Rotates once a minute
    examples = get_industry_context(industry)['examples']
    return examples[int(time.time() // 60) % len(examples)]
